"""
Crontab resource - one entry in a user's crontab.
"""

from typing import Any, Dict, Optional

from laemp.core.resource import Plan, Resource


class Crontab(Resource):
    """
    Ensure a crontab line exists for a user.

    The entry is identified by a literal marker (usually the script path)
    so changing the schedule of an existing entry is left to the operator.

    Example:
        Crontab("moodle-cron", user="www-data",
                entry="*/5 * * * * php /var/www/html/site/admin/cli/cron.php",
                marker="/var/www/html/site/admin/cli/cron.php",
                comment="# Moodle cron job")
    """

    def __init__(
        self,
        name: str,
        user: str,
        entry: str,
        marker: Optional[str] = None,
        comment: Optional[str] = None,
        **options,
    ):
        super().__init__(name, **options)
        self.user = user
        self.entry = entry
        self.marker = marker or entry
        self.comment = comment
        self._existing = ""

    def resource_type(self) -> str:
        return "cron"

    def check(self, ctx) -> Dict[str, Any]:
        # crontab -l exits 1 when the user has no crontab yet
        result = ctx.runner.query(["crontab", "-u", self.user, "-l"])
        self._existing = result.output if result.ok else ""
        return {"exists": self.marker in self._existing}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        lines = self._existing.rstrip("\n")
        if lines:
            lines += "\n"
        if self.comment:
            lines += f"{self.comment}\n"
        lines += f"{self.entry}\n"
        ctx.runner.run(["crontab", "-u", self.user, "-"], mutating=True, input=lines)

    def describe(self, plan: Plan) -> str:
        return self.description or f"add cron entry for {self.user}: {self.entry}"
