"""
Web server base class and virtual host description.

Apache and Nginx share the lifecycle: PHP must be present before the
server is installed, and a vhost is only rendered for a server that is
installed and whose configuration test passes.
"""

from abc import abstractmethod
from dataclasses import dataclass, fields
from typing import Dict, List

from laemp.config import WebServer as WebServerKind
from laemp.core.errors import ConfigurationError, DependencyError
from laemp.core.executor import ApplyResult, Executor
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources import Service, validate_certificates
from laemp.resources.pkg import package_installed
from laemp.stack.base import Component
from laemp.stack.php import Php

logger = get_logger(__name__)


@dataclass(frozen=True)
class VhostSpec:
    """
    Values a virtual host template needs.

    Every field except include_file is required; an empty value is a
    configuration error, never a silently skipped vhost.
    """
    site_name: str
    document_root: str
    admin_email: str
    ssl_cert_file: str
    ssl_key_file: str
    include_file: str = ""

    OPTIONAL = ("include_file",)

    @classmethod
    def for_site(cls, ctx) -> "VhostSpec":
        """Vhost for the configured site, with certificate paths checked on disk."""
        config = ctx.config
        paths = validate_certificates(ctx, config.site_name)
        return cls(
            site_name=config.site_name,
            document_root=config.moodle_dir,
            admin_email=config.admin_email,
            ssl_cert_file=paths.cert,
            ssl_key_file=paths.key,
        )

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: naming the first empty required field
        """
        for f in fields(self):
            if f.name in self.OPTIONAL:
                continue
            if not getattr(self, f.name):
                raise ConfigurationError(f"Missing required vhost option: {f.name.replace('_', '-')}")

    def substitutions(self) -> Dict[str, str]:
        self.validate()
        return {
            "site_name": self.site_name,
            "document_root": self.document_root,
            "admin_email": self.admin_email,
            "ssl_cert_file": self.ssl_cert_file,
            "ssl_key_file": self.ssl_key_file,
        }


class WebServer(Component):
    """Common verify/ensure/vhost flow for Apache and Nginx."""

    package_name = ""
    service_name = ""
    config_test: List[str] = []

    def __init__(self, ctx):
        super().__init__(ctx)
        self.php = Php(ctx)

    def probe(self) -> State:
        if not package_installed(self.ctx, self.package_name):
            return State.ABSENT
        if not self.ctx.runner.query(self.config_test).ok:
            logger.warning(f"{self.label} configuration test failed")
            return State.DRIFTED
        return State.PRESENT

    def verify(self, exit_on_failure: bool = False) -> State:
        state = super().verify(exit_on_failure)
        if exit_on_failure and state is State.DRIFTED:
            raise DependencyError(f"{self.label} configuration has errors")
        return state

    def ensure(self) -> ApplyResult:
        self.php.verify(exit_on_failure=True)
        return super().ensure()

    def service(self, **triggers) -> Service:
        return Service(self.service_name, running=True, enabled=True, **triggers)

    @abstractmethod
    def vhost_resources(self, spec: VhostSpec) -> List[Resource]:
        """Resources that render and enable the vhost."""
        pass

    def create_vhost(self, spec: VhostSpec) -> ApplyResult:
        """Render and enable a vhost on an installed server."""
        self.verify(exit_on_failure=True)
        logger.info(f"Configuring {self.label} virtual host for {spec.site_name}...")
        return Executor(self.ctx).ensure(self.vhost_resources(spec))


def web_server_for(ctx) -> WebServer:
    """
    Component for the selected web server.

    Raises:
        ConfigurationError: if no web server was selected
    """
    from laemp.stack.apache import Apache
    from laemp.stack.nginx import Nginx

    kind = ctx.config.web_server
    if kind is WebServerKind.APACHE:
        return Apache(ctx)
    elif kind is WebServerKind.NGINX:
        return Nginx(ctx)
    raise ConfigurationError("No web server selected (-w apache|nginx)")
