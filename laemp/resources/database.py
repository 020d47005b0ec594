"""
Database resources - databases and scoped users for MariaDB/MySQL and
PostgreSQL.

Existence is checked through catalog queries before anything is created,
and creation statements use "if not exists" semantics where the engine
has them; nothing is ever dropped. SQL carrying secrets is sent on stdin
so passwords never appear in argv or in the command log.
"""

from typing import Any, Callable, Dict, Optional

from laemp.core.errors import DependencyError
from laemp.core.resource import Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)

PasswordSource = Callable[[], Optional[str]]


def _mysql_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _pg_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def mysql_query(ctx, sql: str) -> Optional[str]:
    """Run a read-only query; None when the server is unreachable."""
    result = ctx.runner.query(["mysql", "-N", "-B", "-e", sql])
    return result.output if result.ok else None


def mysql_execute(ctx, sql: str) -> None:
    ctx.runner.run(["mysql"], mutating=True, input=sql)


def psql_args(*args: str):
    return ["runuser", "-u", "postgres", "--", "psql", "-v", "ON_ERROR_STOP=1"] + list(args)


def pg_query(ctx, sql: str) -> Optional[str]:
    """Run a read-only query as the postgres superuser; None when unreachable."""
    result = ctx.runner.query(psql_args("-tAc", sql))
    return result.output if result.ok else None


def pg_execute(ctx, sql: str) -> None:
    ctx.runner.run(psql_args(), mutating=True, input=sql)


def _require_password(ctx, source: PasswordSource, user: str) -> str:
    password = source()
    if not password and ctx.dry_run:
        # nothing is generated in a dry run
        return "<generated>"
    if not password:
        raise DependencyError(f"No password available to create database user {user}")
    return password


class MysqlDatabase(Resource):
    """
    MariaDB/MySQL database with utf8mb4 collation.

    Example:
        MysqlDatabase("moodle")
    """

    def resource_type(self) -> str:
        return "mysql-db"

    def check(self, ctx) -> Dict[str, Any]:
        output = mysql_query(
            ctx, f"SELECT SCHEMA_NAME FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = '{self.name}'"
        )
        return {"exists": output is not None and self.name in output.split()}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        logger.verbose(f"Creating database {self.name}...")
        mysql_execute(
            ctx,
            f"CREATE DATABASE IF NOT EXISTS `{self.name}` "
            f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;\n",
        )

    def describe(self, plan: Plan) -> str:
        return f"create database {self.name}"


class MysqlUser(Resource):
    """
    MariaDB/MySQL user with privileges on exactly one database.

    Example:
        MysqlUser("moodle", host="localhost", database="moodle",
                  password=lambda: cred.value(ctx))
    """

    def __init__(self, name: str, host: str, database: str, password: PasswordSource, **options):
        super().__init__(name, **options)
        self.host = host
        self.database = database
        self.password = password

    @property
    def id(self) -> str:
        return f"mysql-user:{self.name}@{self.host}"

    def resource_type(self) -> str:
        return "mysql-user"

    def check(self, ctx) -> Dict[str, Any]:
        output = mysql_query(
            ctx, f"SELECT User FROM mysql.user WHERE User = '{self.name}' AND Host = '{self.host}'"
        )
        exists = output is not None and self.name in output.split()
        granted = False
        if exists:
            grants = mysql_query(ctx, f"SHOW GRANTS FOR '{self.name}'@'{self.host}'") or ""
            granted = f"`{self.database}`.*" in grants
        return {"exists": exists, "granted": granted}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True, "granted": True}

    def apply(self, plan: Plan, ctx) -> None:
        statements = []
        if not self._actual_state.get("exists"):
            password = _require_password(ctx, self.password, self.name)
            statements.append(
                f"CREATE USER IF NOT EXISTS '{self.name}'@'{self.host}' "
                f"IDENTIFIED BY {_mysql_literal(password)};"
            )
        statements.append(f"GRANT ALL PRIVILEGES ON `{self.database}`.* TO '{self.name}'@'{self.host}';")
        statements.append("FLUSH PRIVILEGES;")
        logger.verbose(f"Creating database user {self.name}...")
        mysql_execute(ctx, "\n".join(statements) + "\n")

    def describe(self, plan: Plan) -> str:
        return f"create database user {self.name} with access to {self.database}"


class PostgresUser(Resource):
    """
    PostgreSQL login role.

    Example:
        PostgresUser("moodle", password=lambda: cred.value(ctx))
    """

    def __init__(self, name: str, password: PasswordSource, **options):
        super().__init__(name, **options)
        self.password = password

    def resource_type(self) -> str:
        return "pg-user"

    def check(self, ctx) -> Dict[str, Any]:
        output = pg_query(ctx, f"SELECT 1 FROM pg_roles WHERE rolname = '{self.name}'")
        return {"exists": output is not None and output.strip() == "1"}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        password = _require_password(ctx, self.password, self.name)
        logger.verbose(f"Creating database user {self.name}...")
        pg_execute(ctx, f"CREATE USER {self.name} WITH PASSWORD {_pg_literal(password)};\n")

    def describe(self, plan: Plan) -> str:
        return f"create database user {self.name}"


class PostgresDatabase(Resource):
    """
    PostgreSQL database in UTF-8, owned by and granted to one user.

    Example:
        PostgresDatabase("moodle", owner="moodle")
    """

    def __init__(self, name: str, owner: str, **options):
        super().__init__(name, **options)
        self.owner = owner

    def resource_type(self) -> str:
        return "pg-db"

    def check(self, ctx) -> Dict[str, Any]:
        output = pg_query(ctx, f"SELECT 1 FROM pg_database WHERE datname = '{self.name}'")
        return {"exists": output is not None and output.strip() == "1"}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        logger.verbose(f"Creating database {self.name}...")
        # CREATE DATABASE has no IF NOT EXISTS; check() guards it
        pg_execute(
            ctx,
            f"CREATE DATABASE {self.name} WITH OWNER {self.owner} ENCODING 'UTF8' "
            f"LC_COLLATE='en_US.UTF-8' LC_CTYPE='en_US.UTF-8' TEMPLATE=template0;\n"
            f"GRANT ALL PRIVILEGES ON DATABASE {self.name} TO {self.owner};\n",
        )

    def describe(self, plan: Plan) -> str:
        return f"create database {self.name}"
