"""
Daemons laemp keeps running: web servers, PHP-FPM, databases, exporters.

Service managers tried, in order:
- systemd (systemctl, when systemd is PID 1)
- /etc/init.d/<name> scripts (containers without systemd)
- service command (fallback)

Outside systemd, failed actions are logged at verbose level and do not
abort the run (container environments often cannot start daemons).
"""

from typing import Any, Dict, List, Optional

from laemp.core.resource import Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)

SYSTEMD_RUNTIME = "/run/systemd/system"


def service_manager(ctx) -> str:
    """Detect the service manager: systemd, service or none. init.d scripts are checked per service."""
    if ctx.runner.which("systemctl") and ctx.runner.file_exists(SYSTEMD_RUNTIME):
        return "systemd"
    if ctx.runner.which("service"):
        return "service"
    return "none"


def _trigger_ids(triggers: Optional[List]) -> List[str]:
    return [t if isinstance(t, str) else t.id for t in triggers or []]


class Service(Resource):
    """
    A daemon with its run and boot state, plus the files it depends on.

    Service("mariadb", running=True, enabled=True)
    Service("nginx", running=True, reload_on=["file:/etc/nginx/nginx.conf"])
    Service("php8.4-fpm", running=True, restart_on=[pool_file])

    The executor reloads or restarts it after a batch in which one of the
    listed resources changed.
    """

    def __init__(
        self,
        name: str,
        running: Optional[bool] = None,
        enabled: Optional[bool] = None,
        reload_on: Optional[List] = None,
        restart_on: Optional[List] = None,
        **options,
    ):
        """
        Args:
            name: Unit or init script name ("nginx", "php8.4-fpm")
            running: None leaves the run state alone
            enabled: None leaves the boot state alone
            reload_on: Resources or ids ("file:/etc/...") that warrant a reload
            restart_on: Same, but for a full restart
        """
        super().__init__(name, **options)

        self.service_name = name
        self.running = running
        self.enabled = enabled
        self.reload_on = _trigger_ids(reload_on)
        self.restart_on = _trigger_ids(restart_on)

    def resource_type(self) -> str:
        return "svc"

    def check(self, ctx) -> Dict[str, Any]:
        manager = service_manager(ctx)
        state = {"exists": True, "running": self._is_running(ctx, manager)}
        if manager == "systemd":
            state["enabled"] = self._is_enabled(ctx)
        else:
            # enablement is a systemd concept; treat it as satisfied
            state["enabled"] = self.enabled
        return state

    def desired_state(self) -> Dict[str, Any]:
        state = {"exists": True}
        if self.running is not None:
            state["running"] = self.running
        if self.enabled is not None:
            state["enabled"] = self.enabled
        return state

    def apply(self, plan: Plan, ctx) -> None:
        for action in self._actions(plan):
            self._manage(ctx, action)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"{' and '.join(self._actions(plan)) or 'manage'} service {self.service_name}"

    @staticmethod
    def _actions(plan: Plan) -> List[str]:
        """Manager verbs for the plan, run state first."""
        verbs = {"running": ("start", "stop"), "enabled": ("enable", "disable")}
        return [
            verbs[c.field][0] if c.to_value else verbs[c.field][1]
            for c in plan.changes
            if c.field in verbs
        ]

    def _is_running(self, ctx, manager: str) -> bool:
        if manager == "systemd":
            return ctx.runner.query(["systemctl", "is-active", "--quiet", self.service_name]).ok

        init_script = f"/etc/init.d/{self.service_name}"
        if ctx.runner.file_exists(init_script):
            return ctx.runner.query([init_script, "status"]).ok
        if manager == "service":
            return ctx.runner.query(["service", self.service_name, "status"]).ok
        return False

    def _is_enabled(self, ctx) -> bool:
        return ctx.runner.query(["systemctl", "is-enabled", "--quiet", self.service_name]).ok

    def _manage(self, ctx, action: str) -> None:
        """Run a service action through the best available manager."""
        manager = service_manager(ctx)

        if manager == "systemd":
            ctx.runner.run(["systemctl", action, self.service_name], mutating=True)
            return

        init_script = f"/etc/init.d/{self.service_name}"
        if ctx.runner.file_exists(init_script):
            if action in ("enable", "disable"):
                if not ctx.runner.which("update-rc.d"):
                    logger.verbose(f"Skipping '{action}' for {self.service_name} (init.d doesn't support it)")
                    return
                args = ["update-rc.d", self.service_name, "defaults" if action == "enable" else "disable"]
            else:
                args = [init_script, action]
        elif manager == "service":
            if action in ("enable", "disable"):
                logger.verbose(f"Skipping '{action}' for {self.service_name} (service command doesn't support it)")
                return
            args = ["service", self.service_name, action]
        else:
            logger.verbose(f"Cannot manage service {self.service_name} - no service manager available")
            return

        result = ctx.runner.run(args, mutating=True, check=False)
        if not result.ok:
            logger.verbose(f"Service {self.service_name} {action} failed (container environment)")

    def reload(self, ctx) -> None:
        self._manage(ctx, "reload")

    def restart(self, ctx) -> None:
        self._manage(ctx, "restart")

    def should_reload(self, changed_resource_ids: List[str]) -> bool:
        return not set(self.reload_on).isdisjoint(changed_resource_ids)

    def should_restart(self, changed_resource_ids: List[str]) -> bool:
        return not set(self.restart_on).isdisjoint(changed_resource_ids)
