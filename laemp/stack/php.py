"""
PHP - interpreter, extensions, php.ini tuning and per-site FPM pools.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from laemp.config import WEB_GROUP, WEB_USER
from laemp.core.errors import DependencyError, DetectionError
from laemp.core.executor import ApplyResult
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources import File, FileValue, Package, Service
from laemp.stack.base import Component, vendor_repository

logger = get_logger(__name__)

# php.ini values Moodle needs
MOODLE_INI_SETTINGS = [
    ("max_input_vars", "5000"),
    ("max_execution_time", "300"),
    ("memory_limit", "256M"),
    ("post_max_size", "100M"),
    ("upload_max_filesize", "100M"),
]

PHP_LOG_DIR = "/var/log/php"
SESSION_ROOT = "/var/lib/php/sessions"


def installed_php_version(ctx) -> Optional[str]:
    """
    major.minor of the php on PATH, or None when PHP is not installed.

    Raises:
        DetectionError: if php exists but its version cannot be read
    """
    if not ctx.runner.which("php"):
        return None

    result = ctx.runner.query(["php", "-r", 'echo PHP_MAJOR_VERSION.".".PHP_MINOR_VERSION;'])
    version = result.output.strip()
    if result.ok and re.match(r"^\d+\.\d+$", version):
        return version

    match = re.search(r"PHP (\d+\.\d+)", ctx.runner.query(["php", "-v"]).output)
    if match:
        return match.group(1)
    raise DetectionError("PHP is installed but its version could not be determined")


def target_php_version(ctx) -> str:
    """
    major.minor every stage builds PHP packages and paths for.

    With -p an already installed PHP satisfies the request, so the stack
    follows that version instead of pulling in a second one. With -P, or
    when no PHP is installed, it is the requested version. Resolved once
    per run.
    """
    if ctx.php_version is None:
        config = ctx.config
        installed = installed_php_version(ctx) if config.php_alongside is None else None
        if installed and installed != config.effective_php_version:
            logger.verbose(f"Using the installed PHP {installed} instead of {config.effective_php_version}")
        ctx.php_version = installed or config.effective_php_version
    return ctx.php_version


@dataclass(frozen=True)
class PoolSpec:
    """PHP-FPM pool for one site."""
    site_name: str
    user: str
    group: str
    socket: str
    open_basedir: str
    listen_owner: str = WEB_USER
    listen_group: str = WEB_GROUP
    max_children: int = 50
    start_servers: int = 10
    min_spare_servers: int = 5
    max_spare_servers: int = 20
    max_requests: int = 500

    @classmethod
    def for_site(cls, config, php_version: str) -> "PoolSpec":
        return cls(
            site_name=config.site_name,
            user=WEB_USER,
            group=WEB_GROUP,
            socket=config.fpm_socket(php_version),
            open_basedir=f"{config.moodle_dir}:{config.moodle_data_dir}:/usr/share/php:/tmp",
        )

    @property
    def session_dir(self) -> str:
        return f"{SESSION_ROOT}/{self.site_name}"

    def substitutions(self) -> Dict[str, str]:
        return {
            "pool_name": self.site_name,
            "user": self.user,
            "group": self.group,
            "socket": self.socket,
            "listen_owner": self.listen_owner,
            "listen_group": self.listen_group,
            "max_children": str(self.max_children),
            "start_servers": str(self.start_servers),
            "min_spare_servers": str(self.min_spare_servers),
            "max_spare_servers": str(self.max_spare_servers),
            "max_requests": str(self.max_requests),
            "session_dir": self.session_dir,
            "open_basedir": self.open_basedir,
        }


class Php(Component):
    """
    PHP from the vendor repositories.

    With -p any installed PHP satisfies the component; with -P the php on
    PATH must be the requested major.minor.
    """

    name = "php"

    def __init__(self, ctx):
        super().__init__(ctx)
        self.alongside = self.config.php_alongside is not None
        self._installed: Optional[str] = None

    @property
    def version(self) -> str:
        return target_php_version(self.ctx)

    @property
    def label(self) -> str:
        return f"PHP {self.version}"

    def probe(self) -> State:
        self._installed = installed_php_version(self.ctx)
        if self._installed is None:
            return State.ABSENT
        if self.alongside and self._installed != self.version:
            logger.verbose(f"Installed PHP {self._installed} does not match the requested {self.version}")
            return State.DRIFTED
        return State.PRESENT

    def verify(self, exit_on_failure: bool = False) -> State:
        state = super().verify(exit_on_failure)
        if exit_on_failure and state is State.DRIFTED and not self.ctx.was_planned(self.name):
            raise DependencyError(
                f"PHP version mismatch. Expected: {self.version}, Installed: {self._installed}"
            )
        return state

    def resources(self) -> List[Resource]:
        return [
            vendor_repository(self.ctx, "php"),
            vendor_repository(self.ctx, "apache2"),
            # cli + common only; the web server stage picks mod_php or fpm
            Package([f"php{self.version}-cli", f"php{self.version}-common"], label=f"php {self.version}"),
        ]

    def ensure(self) -> ApplyResult:
        if not self.alongside and self.probe() is State.PRESENT:
            logger.verbose(f"PHP {self._installed} is already installed")
            self.ctx.mark_planned(self.name)
            return ApplyResult()

        result = super().ensure()
        if not self.ctx.dry_run:
            self.verify(exit_on_failure=True)
        return result

    def package(self, suffix: str) -> str:
        return f"php{self.version}-{suffix}"

    def extensions(self, names: List[str], label: Optional[str] = None) -> Package:
        return Package([self.package(name) for name in names], label=label)

    @property
    def fpm_service_name(self) -> str:
        return f"php{self.version}-fpm"

    @property
    def fpm_socket(self) -> str:
        return self.config.fpm_socket(self.version)

    def fpm_service(self, restart_on: Optional[List] = None) -> Service:
        return Service(self.fpm_service_name, running=True, enabled=True, restart_on=restart_on)

    def pool_resources(self, pool: PoolSpec) -> List[Resource]:
        """Pool file, its session and log directories, and an FPM restart on change."""
        pool_file = File(
            f"/etc/php/{self.version}/fpm/pool.d/{pool.site_name}.conf",
            template="php-fpm-pool.conf.j2",
            substitutions=pool.substitutions(),
            mode=0o644,
        )
        return [
            File(PHP_LOG_DIR, ensure="directory", mode=0o755),
            File(pool.session_dir, ensure="directory", owner=pool.user, group=pool.group,
                 mode=0o700, recurse=True),
            pool_file,
            self.fpm_service(restart_on=[pool_file]),
        ]

    def ini_files(self) -> List[str]:
        """php.ini files present for the cli, apache2 and fpm SAPIs."""
        paths = [f"/etc/php/{self.version}/{sapi}/php.ini" for sapi in ("cli", "apache2", "fpm")]
        return [path for path in paths if self.ctx.runner.file_exists(path)]

    def ini_resources(self, settings=MOODLE_INI_SETTINGS) -> List[FileValue]:
        values = []
        for path in self.ini_files():
            for key, value in settings:
                # also matches the commented-out default ("; max_input_vars = 1000")
                values.append(FileValue(
                    path,
                    pattern=rf"^;?\s*{key}\s*=.*$",
                    replacement=f"{key} = {value}",
                    present=rf"^{key}\s*=\s*{re.escape(value)}\s*$",
                    key=key,
                ))
        return values
