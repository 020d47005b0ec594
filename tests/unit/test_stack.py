"""
Unit tests for the provisioning components and the stage order.
"""

import pytest

from conftest import DEBIAN, FakeTransport
from laemp.core.errors import ConfigurationError, DependencyError
from laemp.core.resource import State
from laemp.orchestrator import stages
from laemp.resources import Package
from laemp.stack import MariaDB, Monitoring, Moodle, PackageManager, Php, PostgreSQL, web_server_for
from laemp.stack.moodle import check_php_compatibility
from laemp.stack.php import PoolSpec
from laemp.stack.web import VhostSpec
from laemp.template import render_resource


def _with_php(transport, version):
    transport.on_path.add("php")
    transport.respond(["php", "-r"], output=version)


class TestPhp:
    """Any-version (-p) and exact-version (-P) PHP."""

    def test_absent(self, clean_host, make_context):
        """Test that no php on PATH is absent."""
        ctx = make_context(clean_host, php="8.4")

        assert Php(ctx).verify() is State.ABSENT

    def test_absent_required(self, clean_host, make_context):
        """Test that a required but missing PHP is a dependency error."""
        ctx = make_context(clean_host, php="8.4")

        with pytest.raises(DependencyError, match="PHP 8.4"):
            Php(ctx).verify(exit_on_failure=True)

    def test_any_version_satisfies(self, transport, make_context):
        """Test that -p accepts whatever PHP is installed and installs nothing."""
        _with_php(transport, "8.3")
        ctx = make_context(transport, php="8.4")

        result = Php(ctx).ensure()

        assert not result.changed
        assert not transport.ran("apt-get", "install")

    def test_alongside_mismatch(self, transport, make_context):
        """Test that -P with a different installed version is drifted and fails verification."""
        _with_php(transport, "8.3")
        ctx = make_context(transport, php_alongside="8.4")
        php = Php(ctx)

        assert php.verify() is State.DRIFTED
        with pytest.raises(DependencyError, match="Expected: 8.4, Installed: 8.3"):
            php.verify(exit_on_failure=True)

    def test_alongside_match(self, transport, make_context):
        """Test that -P with the exact version installed is present."""
        _with_php(transport, "8.4")
        ctx = make_context(transport, php_alongside="8.4")

        assert Php(ctx).verify(exit_on_failure=True) is State.PRESENT

    def test_installed_version_used_by_later_stages(self, transport, make_context):
        """Test that a PHP accepted by -p is the one the web stack builds on."""
        _with_php(transport, "8.3")
        ctx = make_context(transport, php="8.4", web="nginx")
        Php(ctx).ensure()

        packages = [name for r in web_server_for(ctx).resources() if isinstance(r, Package)
                    for name in r.packages]
        pool = Php(ctx).pool_resources(PoolSpec.for_site(ctx.config, Php(ctx).version))

        assert "php8.3-fpm" in packages
        assert not [name for name in packages if name.startswith("php8.4")]
        assert pool[2].path == "/etc/php/8.3/fpm/pool.d/moodle.example.com.conf"
        assert Php(ctx).fpm_socket == "/run/php/php8.3-moodle.example.com.sock"

    def test_alongside_keeps_requested_version(self, transport, make_context):
        """Test that -P builds for the requested version whatever is installed."""
        _with_php(transport, "8.3")
        ctx = make_context(transport, php_alongside="8.4", web="apache")

        packages = [name for r in web_server_for(ctx).resources() if isinstance(r, Package)
                    for name in r.packages]

        assert "libapache2-mod-php8.4" in packages

    def test_dry_run_plans_php(self, clean_host, make_context):
        """Test that a dry run records the install and marks PHP as planned."""
        ctx = make_context(clean_host, php="8.4", dry_run=True)

        Php(ctx).ensure()

        assert "install php 8.4" in ctx.intents
        assert ctx.was_planned("php")
        assert Php(ctx).verify(exit_on_failure=True) is State.ABSENT

    def test_ini_tuning_only_for_present_files(self, transport, make_context):
        """Test that php.ini edits target the SAPIs that exist."""
        transport.add_file("/etc/php/8.4/cli/php.ini", "; max_input_vars = 1000\n")
        ctx = make_context(transport, php="8.4")

        values = Php(ctx).ini_resources()

        assert {value.path for value in values} == {"/etc/php/8.4/cli/php.ini"}
        assert len(values) == 5


class TestWebServer:
    """Web server prerequisites and vhost values."""

    def test_requires_php(self, clean_host, make_context):
        """Test that installing a web server without PHP fails before any package work."""
        ctx = make_context(clean_host, web="nginx")

        with pytest.raises(DependencyError, match="PHP"):
            web_server_for(ctx).ensure()

        assert not clean_host.ran("apt-get", "install")

    def test_no_selection(self, transport, make_context):
        """Test that asking for a web server without -w is a configuration error."""
        ctx = make_context(transport)

        with pytest.raises(ConfigurationError):
            web_server_for(ctx)

    def test_vhost_missing_value(self):
        """Test that an empty required vhost value names the option."""
        spec = VhostSpec(
            site_name="moodle.example.com",
            document_root="/var/www/html/moodle.example.com",
            admin_email="",
            ssl_cert_file="/etc/ssl/moodle.example.com.cert",
            ssl_key_file="/etc/ssl/moodle.example.com.key",
        )

        with pytest.raises(ConfigurationError, match="admin-email"):
            spec.validate()

    def test_vhost_include_optional(self):
        """Test that the include file may be empty."""
        spec = VhostSpec(
            site_name="moodle.example.com",
            document_root="/var/www/html/moodle.example.com",
            admin_email="admin@moodle.example.com",
            ssl_cert_file="/etc/ssl/moodle.example.com.cert",
            ssl_key_file="/etc/ssl/moodle.example.com.key",
        )

        assert spec.substitutions()["document_root"] == "/var/www/html/moodle.example.com"


class TestPhpCompatibility:
    """Minimum PHP per Moodle release."""

    def test_compatible(self):
        """Test a supported pairing."""
        check_php_compatibility("501", "8.4")

    def test_too_old(self):
        """Test that an old PHP is rejected with both versions in the message."""
        with pytest.raises(DependencyError, match="requires PHP 8.2 or higher. Current: 8.1"):
            check_php_compatibility("501", "8.1")

    def test_numeric_comparison(self):
        """Test that 8.10 counts as newer than 8.2."""
        check_php_compatibility("501", "8.10")

    def test_unknown_release(self):
        """Test that an unknown release is not rejected."""
        check_php_compatibility("999", "7.0")


class TestPackageManager:
    """Preflight tool checks."""

    def test_missing_tools(self, make_context):
        """Test that missing tools are listed in the error."""
        ctx = make_context(FakeTransport(commands=["apt-get", "tar"]))

        with pytest.raises(DependencyError, match="add-apt-repository, unzip, wget"):
            PackageManager(ctx).ensure()

    def test_debian_needs_no_ppa_tool(self, make_context):
        """Test that add-apt-repository is only required on Ubuntu."""
        ctx = make_context(FakeTransport(commands=["apt-get", "tar", "unzip", "wget"]), distro=DEBIAN)

        assert PackageManager(ctx).verify(exit_on_failure=True) is State.PRESENT

    def test_refreshes_cache_once(self, transport, make_context):
        """Test that the package cache is refreshed exactly once."""
        ctx = make_context(transport)

        PackageManager(ctx).ensure()
        PackageManager(ctx).ensure()

        assert transport.commands.count(["apt-get", "update"]) == 1


class TestMonitoring:
    """Prometheus and the exporters matching the web stack."""

    def _ids(self, component):
        return [resource.id for resource in component.resources()]

    def test_scrape_jobs_nginx(self, transport, make_context):
        """Test that nginx implies FPM and both are scraped."""
        ctx = make_context(transport, web="nginx", prometheus=True)

        assert Monitoring(ctx).scrape_jobs() == ["nginx", "php-fpm"]

    def test_scrape_jobs_apache(self, transport, make_context):
        """Test Apache with mod_php."""
        ctx = make_context(transport, web="apache", prometheus=True)

        assert Monitoring(ctx).scrape_jobs() == ["apache"]

    def test_exporters_follow_web_server(self, transport, make_context):
        """Test that only the selected web server's exporter is installed."""
        ctx = make_context(transport, web="apache", prometheus=True)

        ids = self._ids(Monitoring(ctx))

        assert "exec:apache_exporter-download" in ids
        assert "exec:node_exporter-download" in ids
        assert "exec:nginx_exporter-download" not in ids
        assert "exec:php-fpm_exporter-download" not in ids

    def test_consoles_copied_before_cleanup(self, transport, make_context):
        """Test that the consoles are copied out of the tarball before it is removed."""
        ctx = make_context(transport, prometheus=True)

        ids = self._ids(Monitoring(ctx))

        assert ids.index("exec:prometheus-consoles") < ids.index("exec:prometheus-cleanup")

    def test_fpm_status_needs_www_pool(self, transport, make_context):
        """Test that the status page is only enabled when www.conf exists."""
        ctx = make_context(transport, web="nginx", prometheus=True)
        assert not any(rid.startswith("block:") for rid in self._ids(Monitoring(ctx)))

        transport.add_file("/etc/php/8.4/fpm/pool.d/www.conf", "[www]\n")
        assert "block:/etc/php/8.4/fpm/pool.d/www.conf:pm.status_path" in self._ids(Monitoring(ctx))

    def test_prometheus_config_lists_jobs(self, transport, make_context):
        """Test that the rendered prometheus.yml carries the extra scrape jobs."""
        ctx = make_context(transport, web="nginx", prometheus=True)

        yml = next(r for r in Monitoring(ctx).resources() if r.id == "file:/etc/prometheus/prometheus.yml")
        content = yml.desired_content()

        assert "localhost:9100" in content
        assert "localhost:9113" in content
        assert "localhost:9253" in content


class TestStages:
    """Stage selection and order."""

    def test_full_order(self, transport, make_context):
        """Test the fixed order with every option selected."""
        ctx = make_context(transport, web="nginx", php="8.4", database="pgsql", moodle="501",
                           memcached="local", self_signed=True, prometheus=True)

        names = [type(component).__name__ for component in stages(ctx)]

        assert names == ["PackageManager", "Certificates", "Php", "Nginx", "Memcached",
                         "PostgreSQL", "Moodle", "Monitoring"]

    def test_only_selected(self, transport, make_context):
        """Test that unselected stages are skipped."""
        ctx = make_context(transport, database="mysql")

        names = [type(component).__name__ for component in stages(ctx)]

        assert names == ["PackageManager", "MariaDB"]


INSTALLED = "install ok installed"
MOODLE_DIR = "/var/www/html/moodle.example.com"
DB_PASSWORD_FILE = "/tmp/moodle-db_password"
MARIADB_TUNING = "/etc/mysql/mariadb.conf.d/99-moodle.cnf"


def _systemd(transport):
    transport.on_path.add("systemctl")
    transport.add_dir("/run/systemd/system")


def _stdin_of(transport, command):
    return "".join(data.decode() for args, data in zip(transport.commands, transport.inputs) if args == command)


def _mariadb_host(transport, password=None, user_exists=True):
    """MariaDB installed and running, with the moodle database and optionally its user."""
    _systemd(transport)
    transport.on_path.add("mysql")
    transport.respond(["dpkg-query"], output=INSTALLED)
    transport.respond(["mysql", "-N", "-B", "-e", "SELECT SCHEMA_NAME"], output="moodle\n")
    transport.respond(["mysql", "-N", "-B", "-e", "SELECT User"], output="moodle\n" if user_exists else "")
    transport.respond(["mysql", "-N", "-B", "-e", "SHOW GRANTS"],
                      output="GRANT ALL PRIVILEGES ON `moodle`.* TO `moodle`@`localhost`\n")
    transport.add_file(MARIADB_TUNING, render_resource("mariadb-moodle.cnf.j2", {"buffer_pool_size": "256M"}))
    if password is not None:
        transport.add_file(DB_PASSWORD_FILE, password + "\n", mode=0o600)


class TestDatabase:
    """MariaDB and PostgreSQL stages on first run, second run and resume."""

    def test_first_run(self, transport, make_context):
        """Test that a fresh MariaDB gets packages, a password, database, user and tuning."""
        _systemd(transport)
        ctx = make_context(transport, database="mysql")

        MariaDB(ctx).ensure()

        password = transport.text(DB_PASSWORD_FILE).strip()
        assert transport.stats[DB_PASSWORD_FILE].mode == 0o600
        assert transport.ran("apt-get", "install", "--yes", "mariadb-server", "mariadb-client")
        sql = _stdin_of(transport, ["mysql"])
        assert "CREATE DATABASE IF NOT EXISTS `moodle`" in sql
        assert f"IDENTIFIED BY '{password}'" in sql
        assert MARIADB_TUNING in transport.files
        assert transport.ran("systemctl", "restart", "mariadb")

    def test_second_run_changes_nothing(self, transport, make_context):
        """Test that a provisioned MariaDB is left untouched."""
        _mariadb_host(transport, password="s3cretFromRun1")
        ctx = make_context(transport, database="mysql")

        result = MariaDB(ctx).ensure()

        assert result.changed_resources == []
        assert ["mysql"] not in transport.commands
        assert not transport.ran("apt-get")
        assert not transport.ran("systemctl", "restart")
        assert transport.text(DB_PASSWORD_FILE) == "s3cretFromRun1\n"

    def test_resume_with_stored_password(self, transport, make_context):
        """Test that a user missing after an interrupted run gets the stored password."""
        _mariadb_host(transport, password="s3cretFromRun1", user_exists=False)
        ctx = make_context(transport, database="mysql")

        MariaDB(ctx).ensure()

        assert "IDENTIFIED BY 's3cretFromRun1'" in _stdin_of(transport, ["mysql"])
        assert transport.text(DB_PASSWORD_FILE) == "s3cretFromRun1\n"

    def test_postgres_role_before_database(self, transport, make_context):
        """Test that the owning role exists before the database is created."""
        _systemd(transport)
        transport.on_path.add("psql")
        ctx = make_context(transport, database="pgsql")

        PostgreSQL(ctx).ensure()

        sql = _stdin_of(transport, ["runuser", "-u", "postgres", "--", "psql", "-v", "ON_ERROR_STOP=1"])
        assert sql.index("CREATE USER moodle") < sql.index("CREATE DATABASE moodle WITH OWNER moodle")
        assert transport.ran("apt-get", "install", "--yes", "postgresql-16")


def _config_php(dbpass="s3cret"):
    return (
        "<?php\n"
        "$CFG->dbtype = 'mariadb';\n"
        "$CFG->dbhost = 'localhost';\n"
        "$CFG->dbname = 'moodle';\n"
        "$CFG->dbuser = 'moodle';\n"
        f"$CFG->dbpass = '{dbpass}';\n"
        "$CFG->prefix = 'mdl_';\n"
        "$CFG->wwwroot = 'http://moodle.example.com';\n"
        "$CFG->dataroot = '/home/moodle/moodledata';\n"
        "require_once(__DIR__ . '/lib/setup.php');\n"
    )


def _moodle_host(transport, config_php=None, extracted=True):
    """Moodle 501 deployed on PHP 8.4: code, Composer, config.php, schema and cron in place."""
    _with_php(transport, "8.4")
    transport.respond(["dpkg-query"], output=INSTALLED)
    transport.respond(["test", "-e"], exit_code=1)
    transport.respond(["php", f"{MOODLE_DIR}/admin/cli/check_database_schema.php"], output="No errors found\n")
    transport.respond(["crontab", "-u", "www-data", "-l"],
                      output=f"*/5 * * * * php {MOODLE_DIR}/admin/cli/cron.php\n")
    transport.add_dir("/home/moodle/moodledata", owner="www-data", group="www-data", mode=0o777)
    transport.add_dir("/var/www/html")
    transport.add_dir(MOODLE_DIR, group="www-data")
    transport.add_file(f"{MOODLE_DIR}/vendor/autoload.php", "<?php\n")
    transport.add_file("/usr/local/bin/composer", "", mode=0o755)
    transport.add_file(f"{MOODLE_DIR}/config.php", config_php or _config_php())
    transport.add_file("/tmp/moodle.example.com-admin_password", "adminFromRun1\n", mode=0o600)
    if extracted:
        transport.add_file(f"{MOODLE_DIR}/config-dist.php", "<?php\n")


class TestMoodle:
    """Moodle stage on a deployed or half-deployed host."""

    OPTIONS = {"php": "8.4", "database": "mysql", "moodle": "501"}

    def test_second_run_changes_nothing(self, transport, make_context):
        """Test that a deployed Moodle is left untouched."""
        _moodle_host(transport)
        ctx = make_context(transport, **self.OPTIONS)

        result = Moodle(ctx).ensure()

        assert result.changed_resources == []
        for tool in ("apt-get", "wget", "tar", "cp", "chown", "chmod", "adduser", "composer"):
            assert not transport.ran(tool)
        assert not transport.ran("php", f"{MOODLE_DIR}/admin/cli/install_database.php")
        assert transport.text(f"{MOODLE_DIR}/config.php") == _config_php()

    def test_second_run_dry_run_has_no_intents(self, transport, make_context):
        """Test that a dry run over a deployed Moodle would do nothing."""
        _moodle_host(transport)
        ctx = make_context(transport, dry_run=True, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert ctx.intents == []

    def test_code_permissions_after_extraction(self, transport, make_context):
        """Test that ownership and mode of the code are fixed only when it was just extracted."""
        _moodle_host(transport, extracted=False)
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert transport.ran("tar", "zx", "-C", MOODLE_DIR)
        assert ["chown", "-R", "root:www-data", MOODLE_DIR] in transport.commands
        assert ["chmod", "-R", "0755", MOODLE_DIR] in transport.commands

    def test_no_code_permissions_without_extraction(self, transport, make_context):
        """Test that an existing code tree keeps its permissions."""
        _moodle_host(transport)
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert ["chown", "-R", "root:www-data", MOODLE_DIR] not in transport.commands

    def test_existing_config_not_copied_over(self, transport, make_context):
        """Test that a non-empty config.php is never replaced by config-dist.php."""
        _moodle_host(transport, config_php=_config_php(dbpass="password"))
        transport.add_file(DB_PASSWORD_FILE, "s3cretFromRun1\n", mode=0o600)
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert transport.ran("test", "-s", f"{MOODLE_DIR}/config.php")
        assert not transport.ran("cp", f"{MOODLE_DIR}/config-dist.php")
        assert "$CFG->dbtype = 'mariadb';" in transport.text(f"{MOODLE_DIR}/config.php")

    def test_resume_fills_stored_password(self, transport, make_context):
        """Test that config.php gets the password an earlier run stored."""
        _moodle_host(transport, config_php=_config_php(dbpass="password"))
        transport.add_file(DB_PASSWORD_FILE, "s3cretFromRun1\n", mode=0o600)
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert "$CFG->dbpass = 's3cretFromRun1';" in transport.text(f"{MOODLE_DIR}/config.php")

    def test_resume_database_and_config_share_password(self, transport, make_context):
        """Test that the database user and config.php get the same stored secret."""
        _mariadb_host(transport, password="s3cretFromRun1", user_exists=False)
        _moodle_host(transport, config_php=_config_php(dbpass="password"))
        ctx = make_context(transport, **self.OPTIONS)

        MariaDB(ctx).ensure()
        Moodle(ctx).ensure()

        assert "IDENTIFIED BY 's3cretFromRun1'" in _stdin_of(transport, ["mysql"])
        assert "$CFG->dbpass = 's3cretFromRun1';" in transport.text(f"{MOODLE_DIR}/config.php")

    def test_db_password_option(self, transport, make_context):
        """Test that --db-password fills config.php when no password file exists."""
        _moodle_host(transport, config_php=_config_php(dbpass="password"))
        ctx = make_context(transport, db_password="given", **self.OPTIONS)

        Moodle(ctx).ensure()

        assert "$CFG->dbpass = 'given';" in transport.text(f"{MOODLE_DIR}/config.php")

    def test_unknown_password(self, transport, make_context):
        """Test that a placeholder with no known password is a dependency error."""
        _moodle_host(transport, config_php=_config_php(dbpass="password"))
        ctx = make_context(transport, **self.OPTIONS)

        with pytest.raises(DependencyError, match="--db-password"):
            Moodle(ctx).ensure()

    def test_schema_installed_with_stored_admin_password(self, transport, make_context):
        """Test that a missing schema is installed with the admin password already on disk."""
        _moodle_host(transport)
        transport.respond(["php", f"{MOODLE_DIR}/admin/cli/check_database_schema.php"], output="")
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        install = [c for c in transport.commands if c[:2] == ["php", f"{MOODLE_DIR}/admin/cli/install_database.php"]]
        assert len(install) == 1
        assert "--adminpass=adminFromRun1" in install[0]
        assert transport.text("/tmp/moodle.example.com-admin_password") == "adminFromRun1\n"

    def test_data_dir_mode_not_recursive(self, transport, make_context):
        """Test that moodledata contents are chowned but never chmodded recursively."""
        _moodle_host(transport)
        transport.add_dir("/home/moodle/moodledata", owner="root", group="root", mode=0o755)
        ctx = make_context(transport, **self.OPTIONS)

        Moodle(ctx).ensure()

        assert ["chown", "-R", "www-data:www-data", "/home/moodle/moodledata"] in transport.commands
        assert ["chmod", "0777", "/home/moodle/moodledata"] in transport.commands
        assert not transport.ran("chmod", "-R", "0777")
