"""
Moodle - release download, config.php, CLI install, cron and vhost.

Stages, in order:
1. PHP must be present and new enough for the requested release
2. PHP extensions and php.ini tuning
3. Directories: data dir writable by the web user outside the web root,
   code dir owned by root and readable by the web group
4. Download and extract the release (skipped once config-dist.php exists)
5. Runtime libraries, Composer and the Composer dependencies
6. config.php from config-dist.php, then per-key substitutions
7. Database schema through Moodle's own CLI installer
8. Cron entry for the web user
9. PHP-FPM pool and the web server vhost, when a web server is selected
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from laemp.config import DOCUMENT_ROOT, MOODLE_USER, WEB_GROUP, WEB_USER, DatabaseEngine
from laemp.config import WebServer as WebServerKind
from laemp.core.errors import DependencyError
from laemp.core.executor import ApplyResult, Executor
from laemp.core.resource import Plan, Resource, State
from laemp.logging import get_logger
from laemp.resources import (
    Credential,
    Crontab,
    Exec,
    File,
    FileBlock,
    FileValue,
    Package,
    SystemUser,
)
from laemp.stack.base import Component
from laemp.stack.memcached import session_save_path
from laemp.stack.php import Php, PoolSpec, installed_php_version
from laemp.stack.web import VhostSpec, web_server_for
from laemp.template import render_resource

logger = get_logger(__name__)

DOWNLOAD_URL = "https://download.moodle.org/download.php/direct/stable{version}/moodle-latest-{version}.tgz"
COMPOSER_INSTALLER_URL = "https://getcomposer.org/installer"
COMPOSER_SETUP = "/tmp/composer-setup.php"
COMPOSER_BIN = "/usr/local/bin/composer"
SETUP_ANCHOR = "require_once(__DIR__ . '/lib/setup.php');"

EXTENSIONS = ["common", "curl", "gd", "intl", "mbstring", "soap", "xml", "zip", "opcache", "ldap"]

RUNTIME_LIBRARIES = [
    "ghostscript",
    "libcurl4",
    "libgss3",
    "libmcrypt-dev",
    "libxml2",
    "libxslt1.1",
    "libzip-dev",
    "sassc",
    "unzip",
    "zip",
]

# Moodle release -> minimum PHP (major.minor)
PHP_REQUIREMENTS = {
    "500": "8.2",
    "501": "8.2",
    "502": "8.2",
    "5003": "8.2",
    "404": "8.1",
    "405": "8.1",
    "402": "8.0",
    "403": "8.0",
    "401": "7.4",
    "400": "7.3",
    "311": "7.3",
    "312": "7.3",
}


def _version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in version.split(".")[:2])


def check_php_compatibility(moodle_version: str, php_version: str) -> None:
    """
    Raises:
        DependencyError: if php_version is older than the release supports
    """
    required = PHP_REQUIREMENTS.get(moodle_version)
    if required is None:
        logger.verbose(f"No specific PHP version requirements known for Moodle version {moodle_version}")
        return

    if _version_tuple(php_version) < _version_tuple(required):
        raise DependencyError(
            f"Moodle {moodle_version} requires PHP {required} or higher. Current: {php_version}"
        )
    logger.verbose(f"PHP version {php_version} is compatible with Moodle {moodle_version}")


def _php_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def config_value(path: str, key: str, placeholder: str, value: Any) -> FileValue:
    """
    Substitution of one $CFG setting in config.php.

    Args:
        path: config.php
        key: $CFG property
        placeholder: regex of the distributed value
        value: desired literal, or a callable producing it at apply time
    """
    if callable(value):
        # any value other than the placeholder counts as configured
        return FileValue(
            path,
            pattern=rf"\$CFG->{key}\s*=\s*{placeholder};",
            replacement=lambda: f"$CFG->{key} = '{_php_literal(value())}';",
            present=rf"\$CFG->{key}\s*=\s*(?!{placeholder};)'",
            key=key,
            description=f"set {key} in config.php",
        )
    return FileValue(
        path,
        pattern=rf"\$CFG->{key}\s*=\s*{placeholder};",
        replacement=f"$CFG->{key} = '{_php_literal(value)}';",
        present=rf"\$CFG->{key}\s*=\s*'{re.escape(_php_literal(value))}';",
        key=key,
        description=f"set {key} in config.php",
    )


class MoodleSchema(Resource):
    """
    Moodle database schema, installed with admin/cli/install_database.php.

    Prior installation is detected with Moodle's own schema check.
    """

    def __init__(self, moodle_dir: str, admin_password: Callable[[], Optional[str]], config, **options):
        super().__init__(moodle_dir, **options)
        self.moodle_dir = moodle_dir
        self.admin_password = admin_password
        self.config = config

    def resource_type(self) -> str:
        return "moodle-schema"

    def check(self, ctx) -> Dict[str, Any]:
        result = ctx.runner.query(["php", f"{self.moodle_dir}/admin/cli/check_database_schema.php"])
        return {"exists": result.ok and "No errors found" in result.output}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        config = self.config
        password = self.admin_password()
        if password is None:
            if not ctx.dry_run:
                raise DependencyError(
                    f"Admin password file {config.admin_password_file} is empty; "
                    f"remove it to generate a new password"
                )
            password = "<generated>"

        logger.info("Installing Moodle database...")
        logger.verbose(f"  Admin email: {config.admin_email}")
        logger.verbose(f"  Full name: {config.site_name}")
        ctx.runner.run(
            [
                "php", f"{self.moodle_dir}/admin/cli/install_database.php",
                "--lang=en",
                "--adminuser=admin",
                f"--adminpass={password}",
                f"--adminemail={config.admin_email}",
                f"--fullname={config.site_name}",
                f"--shortname={config.site_name}",
                "--agree-license",
            ],
            mutating=True,
        )
        if ctx.dry_run:
            return

        logger.success("Moodle installation completed successfully!")
        logger.credential_notice("IMPORTANT: Save these credentials securely", [
            "Admin username: admin",
            f"Admin password: {password}",
            f"Admin email: {config.admin_email}",
            f"Site URL: {config.site_url}",
        ])

    def describe(self, plan: Plan) -> str:
        return f"install the Moodle database for {self.config.site_name}"


class Moodle(Component):
    """Moodle deployment for the configured site."""

    name = "moodle"

    def __init__(self, ctx):
        super().__init__(ctx)
        self.version = self.config.moodle_version
        self.label = f"Moodle {self.version}"
        self.php = Php(ctx)
        self.moodle_dir = self.config.moodle_dir
        self.data_dir = self.config.moodle_data_dir
        self.archive = f"/tmp/moodle-latest-{self.version}.tgz"
        self.config_dist = f"{self.moodle_dir}/config-dist.php"
        self.config_php = f"{self.moodle_dir}/config.php"
        self.admin_credential = Credential(self.config.admin_password_file, label="Moodle admin password")
        self.db_credential = Credential(self.config.db_password_file, label="Database password")

    @property
    def engine(self) -> DatabaseEngine:
        return self.config.database or DatabaseEngine.MYSQL

    def probe(self) -> State:
        runner = self.ctx.runner
        if runner.file_exists(self.config_php):
            return State.PRESENT
        if runner.file_exists(self.config_dist):
            return State.DRIFTED
        return State.ABSENT

    def php_resources(self) -> List[Resource]:
        db_extension = "pgsql" if self.engine is DatabaseEngine.PGSQL else "mysql"
        tuning = self.php.ini_resources()
        resources: List[Resource] = [
            self.php.extensions(EXTENSIONS + [db_extension], label="PHP extensions for Moodle"),
        ]
        resources += tuning
        if self.config.fpm:
            resources.append(self.php.fpm_service(restart_on=tuning))
        return resources

    def download_resources(self) -> List[Resource]:
        return [
            SystemUser(MOODLE_USER),
            File(self.data_dir, ensure="directory", owner=WEB_USER, group=WEB_GROUP,
                 mode=0o777, recurse=True),
            File(DOCUMENT_ROOT, ensure="directory", mode=0o755),
            File(self.moodle_dir, ensure="directory", owner="root", group=WEB_GROUP, mode=0o755),
            Exec(
                "moodle-download",
                command=["wget", "-O", self.archive, DOWNLOAD_URL.format(version=self.version)],
                creates=self.config_dist,
                unless=["test", "-s", self.archive],
                description=f"download Moodle {self.version}",
            ),
        ]

    def extract_resource(self) -> Exec:
        return Exec(
            "moodle-extract",
            command=["tar", "zx", "-C", self.moodle_dir, "--strip-components", "1", "-f", self.archive],
            creates=self.config_dist,
            description=f"extract Moodle {self.version} into {self.moodle_dir}",
        )

    def runtime_packages(self) -> Package:
        libaio = "libaio1"
        if "libaio1t64" in self.ctx.runner.query(["apt-cache", "search", "libaio1t64"]).output:
            libaio = "libaio1t64"

        database = "libpq5" if self.engine is DatabaseEngine.PGSQL else "libmariadb3"
        return Package(RUNTIME_LIBRARIES + [libaio, database], label="Moodle runtime libraries")

    def composer_resources(self) -> List[Resource]:
        return [
            Exec("composer-download",
                 command=["wget", "-qO", COMPOSER_SETUP, COMPOSER_INSTALLER_URL],
                 creates=COMPOSER_BIN,
                 description="download the Composer installer"),
            Exec("composer-install",
                 command=["php", COMPOSER_SETUP, "--install-dir=/usr/local/bin", "--filename=composer"],
                 creates=COMPOSER_BIN,
                 description="install Composer"),
            Exec("composer-cleanup",
                 command=["rm", "-f", COMPOSER_SETUP],
                 only_if=["test", "-e", COMPOSER_SETUP],
                 description="remove the Composer installer"),
            Exec("moodle-composer",
                 command=["composer", "install", "--no-dev", "--classmap-authoritative",
                          f"--working-dir={self.moodle_dir}"],
                 creates=f"{self.moodle_dir}/vendor/autoload.php",
                 environment={"COMPOSER_ALLOW_SUPERUSER": "1"},
                 description="install Moodle Composer dependencies"),
        ]

    def db_password(self) -> str:
        """
        Password for $CFG->dbpass.

        Raises:
            DependencyError: if no password file exists and none was given
                with --db-password
        """
        config = self.config
        password = self.db_credential.value(self.ctx) or config.db_password
        if password:
            return password
        if self.ctx.dry_run:
            return "<generated>"
        raise DependencyError(
            f"Database password unknown: {config.db_password_file} is missing or empty; "
            f"pass it with --db-password"
        )

    def config_resources(self) -> List[Resource]:
        config = self.config
        path = self.config_php
        dbtype = "pgsql" if self.engine is DatabaseEngine.PGSQL else "mariadb"

        resources: List[Resource] = [
            Exec("moodle-config",
                 command=["cp", self.config_dist, path],
                 unless=["test", "-s", path],
                 description="create config.php from config-dist.php"),
            config_value(path, "dbtype", "'pgsql'", dbtype),
            config_value(path, "dbhost", "'localhost'", config.db_host),
            config_value(path, "dbname", "'moodle'", config.db_name),
            config_value(path, "dbuser", "'username'", config.db_user),
            config_value(path, "dbpass", "'password'", self.db_password),
            config_value(path, "prefix", "'mdl_'", config.db_prefix),
            config_value(path, "wwwroot", ".*", config.site_url),
            config_value(path, "dataroot", ".*", self.data_dir),
        ]

        if config.web_server is WebServerKind.NGINX:
            resources.append(FileBlock(
                path,
                marker="CFG->xsendfile",
                block=render_resource("moodle-xsendfile.php.j2", {"moodle_data_dir": self.data_dir}),
                anchor=SETUP_ANCHOR,
                description="enable X-Accel-Redirect file serving in config.php",
            ))
        if config.memcached is not None:
            resources.append(FileBlock(
                path,
                marker="CFG->session_handler_class",
                block=render_resource("moodle-memcached.php.j2", {"save_path": session_save_path()}),
                anchor=SETUP_ANCHOR,
                description="store Moodle sessions in Memcached",
            ))
        return resources

    def install_resources(self) -> List[Resource]:
        return [
            self.admin_credential,
            MoodleSchema(self.moodle_dir, admin_password=lambda: self.admin_credential.value(self.ctx),
                         config=self.config),
            Crontab(
                "moodle-cron",
                user=WEB_USER,
                entry=f"*/5 * * * * php {self.moodle_dir}/admin/cli/cron.php",
                marker=f"{self.moodle_dir}/admin/cli/cron.php",
                comment="# Moodle cron job",
            ),
        ]

    def resources(self) -> List[Resource]:
        return (
            self.php_resources()
            + self.download_resources()
            + [self.extract_resource(), self.runtime_packages()]
            + self.composer_resources()
            + self.config_resources()
            + self.install_resources()
        )

    def _fix_code_permissions(self) -> None:
        """Extracted files: root-owned, group web, 0755."""
        runner = self.ctx.runner
        runner.chown(self.moodle_dir, "root", WEB_GROUP, recurse=True)
        runner.chmod(self.moodle_dir, 0o755, recurse=True)

    def ensure(self) -> ApplyResult:
        logger.info(f"Ensuring {self.label}...")
        self.php.verify(exit_on_failure=True)
        check_php_compatibility(self.version, installed_php_version(self.ctx) or self.php.version)

        executor = Executor(self.ctx)
        result = ApplyResult()

        extract = self.extract_resource()
        first = executor.ensure(self.php_resources() + self.download_resources() + [extract])
        result.changed_resources += first.changed_resources
        if extract.id in first.changed_resources:
            self._fix_code_permissions()

        rest = executor.ensure(
            [self.runtime_packages()]
            + self.composer_resources()
            + self.config_resources()
            + self.install_resources()
        )
        result.changed_resources += rest.changed_resources

        if self.config.web_server is not None:
            result.changed_resources += self._ensure_site().changed_resources

        self.ctx.mark_planned(self.name)
        return result

    def _ensure_site(self) -> ApplyResult:
        web = web_server_for(self.ctx)
        web.verify(exit_on_failure=True)

        result = ApplyResult()
        if self.config.fpm:
            spec = PoolSpec.for_site(self.config, self.php.version)
            pool = Executor(self.ctx).ensure(self.php.pool_resources(spec))
            result.changed_resources += pool.changed_resources

        vhost = web.create_vhost(VhostSpec.for_site(self.ctx))
        result.changed_resources += vhost.changed_resources
        return result
