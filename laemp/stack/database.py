"""
Database engines - MariaDB (for -d mysql) and PostgreSQL 16.

Both engines share the credential handling: one password file per
database user, generated once, never regenerated on later runs.
"""

from typing import List, Optional

from laemp.config import DatabaseEngine
from laemp.core.errors import ConfigurationError
from laemp.core.executor import ApplyResult
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources import (
    Credential,
    File,
    MysqlDatabase,
    MysqlUser,
    Package,
    PostgresDatabase,
    PostgresUser,
    Repository,
    Service,
)
from laemp.stack.base import Component

logger = get_logger(__name__)

POSTGRES_VERSION = "16"
PGDG_KEYRING = "/etc/apt/keyrings/postgresql.asc"


class Database(Component):
    """Shared credential and reporting logic for the database engines."""

    server_binary = ""
    service_name = ""

    def __init__(self, ctx):
        super().__init__(ctx)
        self.credential = Credential(self.config.db_password_file, label="Database password")

    def password(self) -> Optional[str]:
        """Generated or stored password, else the operator-supplied one."""
        return self.credential.value(self.ctx) or self.config.db_password

    def probe(self) -> State:
        if not self.ctx.runner.which(self.server_binary):
            return State.ABSENT
        running = Service(self.service_name).check(self.ctx).get("running")
        if not running:
            logger.verbose(f"{self.label} is installed but not running")
            return State.DRIFTED
        return State.PRESENT

    def ensure(self) -> ApplyResult:
        result = super().ensure()
        logger.info(f"Database: {self.config.db_name}")
        logger.info(f"User: {self.config.db_user}")
        logger.info(f"Password stored in: {self.config.db_password_file}")
        return result


class MariaDB(Database):
    """MariaDB server and client from the distribution."""

    name = "mysql"
    label = "MariaDB"
    server_binary = "mysql"
    service_name = "mariadb"

    def resources(self) -> List[Resource]:
        config = self.config
        tuning = File(
            "/etc/mysql/mariadb.conf.d/99-moodle.cnf",
            template="mariadb-moodle.cnf.j2",
            substitutions={"buffer_pool_size": "256M"},
            mode=0o644,
        )
        return [
            Package(["mariadb-server", "mariadb-client"], label="MariaDB"),
            Service(self.service_name, running=True, enabled=True),
            self.credential,
            MysqlDatabase(config.db_name),
            MysqlUser(config.db_user, host=config.db_host, database=config.db_name,
                      password=self.password),
            tuning,
            Service(self.service_name, restart_on=[tuning]),
        ]


class PostgreSQL(Database):
    """PostgreSQL 16 from the PGDG repository."""

    name = "pgsql"
    label = "PostgreSQL"
    server_binary = "psql"
    service_name = "postgresql"

    def resources(self) -> List[Resource]:
        config = self.config
        tuning = File(
            f"/etc/postgresql/{POSTGRES_VERSION}/main/conf.d/99-moodle.conf",
            template="postgresql-moodle.conf.j2",
            substitutions={"max_connections": "200", "shared_buffers": "256MB"},
            mode=0o644,
        )
        return [
            Repository(
                "pgdg",
                repo=(f"deb [arch=amd64 signed-by={PGDG_KEYRING}] "
                      f"http://apt.postgresql.org/pub/repos/apt {self.ctx.distro.codename}-pgdg main"),
                key_url="https://www.postgresql.org/media/keys/ACCC4CF8.asc",
                keyring=PGDG_KEYRING,
            ),
            Package([f"postgresql-{POSTGRES_VERSION}", f"postgresql-client-{POSTGRES_VERSION}", "libpq-dev"],
                    label=f"PostgreSQL {POSTGRES_VERSION}"),
            Service(self.service_name, running=True, enabled=True),
            self.credential,
            PostgresUser(config.db_user, password=self.password),
            PostgresDatabase(config.db_name, owner=config.db_user),
            tuning,
            Service(self.service_name, restart_on=[tuning]),
        ]


def database_for(ctx) -> Database:
    """
    Component for the selected engine.

    Raises:
        ConfigurationError: if no engine was selected
    """
    engine = ctx.config.database
    if engine is DatabaseEngine.MYSQL:
        return MariaDB(ctx)
    elif engine is DatabaseEngine.PGSQL:
        return PostgreSQL(ctx)
    raise ConfigurationError("No database engine selected (-d mysql|pgsql)")
