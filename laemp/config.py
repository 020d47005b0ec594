"""
Run configuration.

A Configuration is built once from the parsed command line and never
mutated afterwards; derived values (paths, URLs) are properties.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from laemp.core.errors import ConfigurationError

DEFAULT_PHP_VERSION = "8.4"
DEFAULT_MOODLE_VERSION = "501"
DEFAULT_SITE_NAME = "moodle.example.com"
DEFAULT_LOG_DIR = "logs"

DOCUMENT_ROOT = "/var/www/html"
MOODLE_DATA_DIR = "/home/moodle/moodledata"
MOODLE_USER = "moodle"
WEB_USER = "www-data"
WEB_GROUP = "www-data"

ACME_DIRECTORIES = {
    "staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
    "production": "https://acme-v02.api.letsencrypt.org/directory",
}

_PHP_VERSION = re.compile(r"^\d+\.\d+$")
_MOODLE_VERSION = re.compile(r"^\d{3,4}$")
_SQL_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
_SITE_NAME = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?$")


class WebServer(Enum):
    APACHE = "apache"
    NGINX = "nginx"


class DatabaseEngine(Enum):
    MYSQL = "mysql"
    PGSQL = "pgsql"

    @classmethod
    def parse(cls, value: str) -> "DatabaseEngine":
        """Accept the engine name, with mysqli as an alias of mysql."""
        if value == "mysqli":
            return cls.MYSQL
        return cls(value)


class CertMode(Enum):
    NONE = "none"
    SELF_SIGNED = "self-signed"
    ACME = "acme"


class MemcachedMode(Enum):
    LOCAL = "local"
    NETWORK = "network"


class AcmeProvider(Enum):
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class Configuration:
    """
    Resolved operator intentions for one run.

    Validation happens in __post_init__, before anything touches the host.
    """
    web_server: Optional[WebServer] = None
    php_version: Optional[str] = None
    php_alongside: Optional[str] = None
    fpm: bool = False
    database: Optional[DatabaseEngine] = None
    moodle_version: Optional[str] = None
    memcached: Optional[MemcachedMode] = None
    cert_mode: CertMode = CertMode.NONE
    prometheus: bool = False
    dry_run: bool = False
    verbose: bool = False
    ci: bool = False
    use_sudo: bool = False

    site_name: str = DEFAULT_SITE_NAME
    acme_email: Optional[str] = None
    acme_provider: AcmeProvider = AcmeProvider.STAGING
    log_dir: Optional[str] = DEFAULT_LOG_DIR
    db_password: Optional[str] = None

    db_host: str = "localhost"
    db_name: str = "moodle"
    db_user: str = "moodle"
    db_prefix: str = "mdl_"

    def __post_init__(self):
        if self.fpm and self.web_server is None:
            raise ConfigurationError("PHP-FPM (-f) requires a web server selection (-w apache|nginx)")

        # nginx only talks to PHP through FPM
        if self.web_server is WebServer.NGINX and not self.fpm:
            object.__setattr__(self, "fpm", True)

        for label, version in (("PHP version", self.php_version),
                               ("PHP alongside version", self.php_alongside)):
            if version is not None and not _PHP_VERSION.match(version):
                raise ConfigurationError(f"{label} must look like major.minor (e.g. 8.4), got '{version}'")

        if self.moodle_version is not None and not _MOODLE_VERSION.match(self.moodle_version):
            raise ConfigurationError(
                f"Moodle version must be a release code such as 501, got '{self.moodle_version}'"
            )

        if not _SITE_NAME.match(self.site_name):
            raise ConfigurationError(f"Invalid site name '{self.site_name}'")

        for label, ident in (("database name", self.db_name), ("database user", self.db_user)):
            if not _SQL_IDENTIFIER.match(ident):
                raise ConfigurationError(f"Invalid {label} '{ident}'")

        if self.moodle_version is not None and self.web_server is not None \
                and self.cert_mode is CertMode.NONE:
            raise ConfigurationError(
                "Deploying Moodle behind a web server requires a certificate (-S or -a)"
            )

    def with_sudo(self, use_sudo: bool) -> "Configuration":
        """Copy of this configuration with the resolved privilege mode."""
        return replace(self, use_sudo=use_sudo)

    @property
    def effective_php_version(self) -> str:
        return self.php_version or self.php_alongside or DEFAULT_PHP_VERSION

    @property
    def needs_php(self) -> bool:
        return self.php_version is not None or self.php_alongside is not None

    @property
    def admin_email(self) -> str:
        return f"admin@{self.site_name}"

    @property
    def effective_acme_email(self) -> str:
        return self.acme_email or self.admin_email

    @property
    def acme_directory(self) -> str:
        return ACME_DIRECTORIES[self.acme_provider.value]

    @property
    def moodle_dir(self) -> str:
        return f"{DOCUMENT_ROOT}/{self.site_name}"

    @property
    def moodle_data_dir(self) -> str:
        return MOODLE_DATA_DIR

    @property
    def db_password_file(self) -> str:
        return f"/tmp/{self.db_user}-db_password"

    @property
    def admin_password_file(self) -> str:
        return f"/tmp/{self.site_name}-admin_password"

    @property
    def site_url(self) -> str:
        scheme = "http" if self.cert_mode is CertMode.NONE else "https"
        return f"{scheme}://{self.site_name}"

    def fpm_socket(self, php_version: str) -> str:
        """Per-site PHP-FPM socket of the given PHP version."""
        return f"/run/php/php{php_version}-{self.site_name}.sock"


def build_configuration(
    web: Optional[str] = None,
    php: Optional[str] = None,
    php_alongside: Optional[str] = None,
    fpm: bool = False,
    database: Optional[str] = None,
    moodle: Optional[str] = None,
    memcached: Optional[str] = None,
    self_signed: bool = False,
    acme: bool = False,
    prometheus: bool = False,
    dry_run: bool = False,
    verbose: bool = False,
    ci: bool = False,
    sudo: bool = False,
    site_name: str = DEFAULT_SITE_NAME,
    acme_email: Optional[str] = None,
    acme_provider: str = "staging",
    log_dir: Optional[str] = DEFAULT_LOG_DIR,
    db_password: Optional[str] = None,
) -> Configuration:
    """
    Turn raw option values into a validated Configuration.

    Raises:
        ConfigurationError: on any invalid value or combination
    """
    if self_signed and acme:
        raise ConfigurationError("Self-signed (-S) and ACME (-a) certificates are mutually exclusive")

    try:
        web_server = WebServer(web) if web else None
    except ValueError:
        raise ConfigurationError(f"Unknown web server '{web}' (expected apache or nginx)") from None

    try:
        engine = DatabaseEngine.parse(database) if database else None
    except ValueError:
        raise ConfigurationError(f"Unknown database '{database}' (expected mysql or pgsql)") from None

    try:
        memcached_mode = MemcachedMode(memcached) if memcached else None
    except ValueError:
        raise ConfigurationError(f"Unknown memcached mode '{memcached}' (expected local or network)") from None

    try:
        provider = AcmeProvider(acme_provider)
    except ValueError:
        raise ConfigurationError(
            f"Unknown ACME provider '{acme_provider}' (expected staging or production)"
        ) from None

    if self_signed:
        cert_mode = CertMode.SELF_SIGNED
    elif acme:
        cert_mode = CertMode.ACME
    else:
        cert_mode = CertMode.NONE

    return Configuration(
        web_server=web_server,
        php_version=php,
        php_alongside=php_alongside,
        fpm=fpm,
        database=engine,
        moodle_version=moodle,
        memcached=memcached_mode,
        cert_mode=cert_mode,
        prometheus=prometheus,
        dry_run=dry_run,
        verbose=verbose,
        ci=ci,
        use_sudo=sudo,
        site_name=site_name,
        acme_email=acme_email,
        acme_provider=provider,
        log_dir=log_dir,
        db_password=db_password,
    )
