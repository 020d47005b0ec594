"""
Unit tests for the Executor plan/apply workflow.
"""

import pytest

from laemp.core.errors import CommandError
from laemp.core.executor import Executor
from laemp.core.resource import Plan, Resource
from laemp.resources import File, Service


class MockResource(Resource):
    """Resource whose state lives in a shared dict."""

    def __init__(self, name, store, fail=False, **options):
        super().__init__(name, **options)
        self.store = store
        self.fail = fail

    def resource_type(self):
        return "mock"

    def check(self, ctx):
        return {"exists": self.name in self.store}

    def desired_state(self):
        return {"exists": True}

    def apply(self, plan: Plan, ctx):
        if self.fail:
            raise CommandError(["false"], 1)
        self.store.setdefault("_order", []).append(self.name)
        if not ctx.dry_run:
            self.store[self.name] = True


def _systemd(transport):
    transport.on_path.add("systemctl")
    transport.add_dir("/run/systemd/system")


class TestExecutor:
    """Ordered ensure passes."""

    def test_applies_in_order(self, transport, make_context):
        """Test that resources are applied in the given order."""
        store = {}
        ctx = make_context(transport)

        result = Executor(ctx).ensure([MockResource(n, store) for n in ("a", "b", "c")])

        assert store["_order"] == ["a", "b", "c"]
        assert result.changed_resources == ["mock:a", "mock:b", "mock:c"]
        assert result.changed

    def test_skips_satisfied(self, transport, make_context):
        """Test that resources already in place are not applied."""
        store = {"a": True}
        ctx = make_context(transport)

        result = Executor(ctx).ensure([MockResource("a", store), MockResource("b", store)])

        assert result.changed_resources == ["mock:b"]

    def test_second_run_is_noop(self, transport, make_context):
        """Test idempotence of a repeated batch."""
        store = {}
        ctx = make_context(transport)
        Executor(ctx).ensure([MockResource("a", store)])

        assert not Executor(ctx).ensure([MockResource("a", store)]).changed

    def test_stops_at_first_error(self, transport, make_context):
        """Test that the first failure propagates and later resources are untouched."""
        store = {}
        ctx = make_context(transport)

        with pytest.raises(CommandError):
            Executor(ctx).ensure([
                MockResource("a", store),
                MockResource("b", store, fail=True),
                MockResource("c", store),
            ])

        assert store["_order"] == ["a"]
        assert "c" not in store

    def test_dry_run_records_intents(self, transport, make_context):
        """Test that dry-run records one intent per change and still calls apply."""
        store = {}
        ctx = make_context(transport, dry_run=True)

        Executor(ctx).ensure([
            MockResource("a", store, description="download Moodle 501"),
            MockResource("b", store),
        ])

        assert ctx.intents == ["download Moodle 501", "create mock:b"]
        assert store["_order"] == ["a", "b"]

    def test_reload_on_change(self, transport, make_context):
        """Test that a changed watched file reloads the service."""
        _systemd(transport)
        ctx = make_context(transport)
        conf = File("/etc/nginx/nginx.conf", content="events {}\n")

        Executor(ctx).ensure([conf, Service("nginx", reload_on=[conf])])

        assert transport.ran("systemctl", "reload", "nginx")
        assert not transport.ran("systemctl", "restart", "nginx")

    def test_restart_wins_over_reload(self, transport, make_context):
        """Test that restart takes precedence when both triggers fire."""
        _systemd(transport)
        ctx = make_context(transport)
        pool = File("/etc/php/8.4/fpm/pool.d/site.conf", content="[site]\n")

        Executor(ctx).ensure([pool, Service("php8.4-fpm", reload_on=[pool], restart_on=[pool])])

        assert transport.ran("systemctl", "restart", "php8.4-fpm")
        assert not transport.ran("systemctl", "reload", "php8.4-fpm")

    def test_no_trigger_without_change(self, transport, make_context):
        """Test that an unchanged file triggers nothing."""
        _systemd(transport)
        transport.add_file("/etc/nginx/nginx.conf", "events {}\n")
        ctx = make_context(transport)
        conf = File("/etc/nginx/nginx.conf", content="events {}\n")

        Executor(ctx).ensure([conf, Service("nginx", reload_on=[conf])])

        assert not transport.ran("systemctl", "reload", "nginx")

    def test_daemon_reload_for_units(self, transport, make_context):
        """Test that a changed systemd unit triggers daemon-reload first."""
        _systemd(transport)
        ctx = make_context(transport)
        unit = File("/etc/systemd/system/node_exporter.service", content="[Unit]\n")

        Executor(ctx).ensure([unit, Service("node_exporter", restart_on=[unit])])

        reload_index = transport.commands.index(["systemctl", "daemon-reload"])
        restart_index = transport.commands.index(["systemctl", "restart", "node_exporter"])
        assert reload_index < restart_index
