"""
Executor - applies an ordered batch of resources.

The executor:
1. Plans each resource right before applying it (earlier resources in the
   batch may change what later ones see)
2. Applies changes, stopping at the first error
3. Triggers service reloads/restarts for changed dependencies
"""

import time
from dataclasses import dataclass, field
from typing import List

from laemp.core.context import ExecutionContext
from laemp.core.resource import Resource
from laemp.logging import get_logger

logger = get_logger(__name__)

SYSTEMD_UNIT_DIR = "/etc/systemd/system"


@dataclass
class ApplyResult:
    """
    Result of an ensure pass.

    Contains changed resource IDs and timing.
    """
    changed_resources: List[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def changed(self) -> bool:
        return len(self.changed_resources) > 0


class Executor:
    """
    Resource executor implementing the plan/apply workflow.

    Example:
        executor = Executor(ctx)
        result = executor.ensure([
            Package(["nginx"]),
            File("/etc/nginx/nginx.conf", template="nginx.conf.j2", substitutions={...}),
            Service("nginx", running=True, reload_on=["file:/etc/nginx/nginx.conf"]),
        ])
    """

    def __init__(self, ctx: ExecutionContext):
        self.ctx = ctx

    def ensure(self, resources: List[Resource]) -> ApplyResult:
        """
        Bring every resource to its desired state, in order.

        Errors propagate unchanged; there is no rollback.
        """
        result = ApplyResult()
        start_time = time.time()

        for resource in resources:
            plan = resource.plan(self.ctx)
            if not plan.has_changes():
                logger.verbose(f"{resource.id}: already in desired state")
                continue

            logger.debug(f"{resource.id}: {plan}")
            if self.ctx.dry_run:
                self.ctx.record_intent(resource.describe(plan))

            resource.apply(plan, self.ctx)
            result.changed_resources.append(resource.id)
            if not self.ctx.dry_run:
                logger.action(plan.action.value, resource.id)

        result.duration = time.time() - start_time

        if result.changed_resources:
            self._trigger_service_reloads(resources, result.changed_resources)

        return result

    def _trigger_service_reloads(self, resources: List[Resource], changed_resource_ids: List[str]) -> None:
        """Reload/restart services whose watched resources changed."""
        from laemp.resources.service import Service

        unit_changed = any(
            rid.startswith(f"file:{SYSTEMD_UNIT_DIR}/") for rid in changed_resource_ids
        )
        if unit_changed and self.ctx.runner.which("systemctl"):
            self.ctx.runner.run(["systemctl", "daemon-reload"], mutating=True)

        for resource in resources:
            if not isinstance(resource, Service):
                continue

            # restart takes precedence over reload
            if resource.should_restart(changed_resource_ids):
                logger.action("restart", resource.id)
                resource.restart(self.ctx)
                continue

            if resource.should_reload(changed_resource_ids):
                logger.action("reload", resource.id)
                resource.reload(self.ctx)
