"""
Credential resource - generated secrets stored in 0600 files.

A secret is generated once. If its file already exists it is never
regenerated; a later run reads it back so a half-finished provisioning
can be resumed with the same flags.
"""

import secrets
import string
from typing import Any, Dict, Optional

from laemp.core.resource import Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)

ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 20) -> str:
    """Random alphanumeric password from the secrets module."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


class Credential(Resource):
    """
    Generated secret persisted to a restricted file.

    Example:
        cred = Credential("/tmp/moodle-db_password", label="Database password")
        executor.ensure([cred])
        cred.value(ctx)  # the secret, or None when no file exists yet
    """

    def __init__(self, path: str, label: str = "Password", length: int = 20, **options):
        super().__init__(path, **options)
        self.path = path
        self.label = label
        self.length = length

    def resource_type(self) -> str:
        return "credential"

    def check(self, ctx) -> Dict[str, Any]:
        return {"exists": ctx.runner.file_exists(self.path)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        if ctx.dry_run:
            logger.verbose(f"DRY RUN: Would generate {self.label.lower()} into {self.path}")
            return

        secret = generate_password(self.length)
        ctx.runner.write_file(self.path, secret + "\n", mode=0o600)
        ctx.secrets[self.path] = secret
        logger.info(f"{self.label} stored in {self.path}")

    def value(self, ctx) -> Optional[str]:
        """The secret generated during this run, else the one stored by an earlier run."""
        if self.path in ctx.secrets:
            return ctx.secrets[self.path]
        stored = ctx.runner.read_file(self.path)
        if not stored or not stored.strip():
            return None
        ctx.secrets[self.path] = stored.strip()
        return ctx.secrets[self.path]

    def describe(self, plan: Plan) -> str:
        return self.description or f"generate {self.label.lower()} in {self.path}"
