"""
Exec resource - run a command once, guarded for idempotence.

Commands are argument lists and never go through a shell.

Idempotency guards:
- creates: Run only if this path doesn't exist
- unless: Run only if this command fails
- only_if: Run only if this command succeeds
"""

from typing import Any, Dict, List, Optional

from laemp.core.resource import Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)


class Exec(Resource):
    """
    Exec resource for running commands.

    Examples:
        # Run once (creates guard)
        Exec("moodle-extract",
             command=["tar", "zx", "-C", "/var/www/html/site", "--strip-components", "1",
                      "-f", "/tmp/moodle-latest-501.tgz"],
             creates="/var/www/html/site/config-dist.php",
             description="extract Moodle 501")

        # Conditional execution
        Exec("a2enmod-ssl", command=["a2enmod", "ssl"],
             unless=["test", "-e", "/etc/apache2/mods-enabled/ssl.load"])
    """

    def __init__(
        self,
        name: str,
        command: List[str],
        creates: Optional[str] = None,
        unless: Optional[List[str]] = None,
        only_if: Optional[List[str]] = None,
        environment: Optional[Dict[str, str]] = None,
        **options,
    ):
        """
        Initialize exec resource.

        Args:
            name: Resource name
            command: Command and arguments
            creates: Only run if this path doesn't exist
            unless: Only run if this command fails
            only_if: Only run if this command succeeds
            environment: Extra environment variables
        """
        super().__init__(name, **options)

        if not command:
            raise ValueError("Exec requires a command")

        self.command = list(command)
        self.creates = creates
        self.unless = unless
        self.only_if = only_if
        self.environment = environment or {}

    def resource_type(self) -> str:
        return "exec"

    def should_run(self, ctx) -> bool:
        if self.creates and ctx.runner.file_exists(self.creates):
            return False
        if self.unless and ctx.runner.query(self.unless).ok:
            return False
        if self.only_if and not ctx.runner.query(self.only_if).ok:
            return False
        return True

    def check(self, ctx) -> Dict[str, Any]:
        """A command that no longer needs to run counts as present."""
        return {"exists": not self.should_run(ctx)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        """Execute command."""
        ctx.runner.run(self.command, mutating=True, env=self.environment or None)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"run {' '.join(self.command)}"
