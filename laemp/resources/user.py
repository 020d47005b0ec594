"""
SystemUser resource - system accounts for services.
"""

from typing import Any, Dict

from laemp.core.resource import Plan, Resource


class SystemUser(Resource):
    """
    System account, created with adduser --system.

    Example:
        SystemUser("prometheus", group=True, create_home=False)
    """

    def __init__(self, name: str, group: bool = False, create_home: bool = True, **options):
        super().__init__(name, **options)
        self.group = group
        self.create_home = create_home

    def resource_type(self) -> str:
        return "user"

    def check(self, ctx) -> Dict[str, Any]:
        return {"exists": ctx.runner.query(["id", "-u", self.name]).ok}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        args = ["adduser", "--system"]
        if self.group:
            args.append("--group")
        if not self.create_home:
            args.append("--no-create-home")
        ctx.runner.run(args + [self.name], mutating=True)

    def describe(self, plan: Plan) -> str:
        return self.description or f"create system user {self.name}"
