"""
laemp CLI - provision a LAMP/LEMP stack and deploy Moodle.

Examples:
    laemp -w nginx -p 8.4 -d mysql -m 501 -S -n -v
    laemp -w apache -p -f -d pgsql -a --site-name lms.example.org
    laemp -p -w nginx          # -p without a value installs PHP 8.4

Options taking an optional value (-w -p -P -d -m -M) fall back to their
default when the next argument is missing or is another option.
"""

import sys
from typing import List, Optional

import click

from laemp import __version__
from laemp.config import (
    DEFAULT_LOG_DIR,
    DEFAULT_MOODLE_VERSION,
    DEFAULT_PHP_VERSION,
    DEFAULT_SITE_NAME,
    build_configuration,
)
from laemp.core.context import create_context, resolve_privilege
from laemp.core.errors import CommandError, ConfigurationError, LaempError
from laemp.logging import current_log_file, get_logger, setup_logging
from laemp.orchestrator import provision
from laemp.transport import LocalTransport

logger = get_logger(__name__)

CONTEXT_SETTINGS = {
    "help_option_names": [],
    "auto_envvar_prefix": "LAEMP",
    "max_content_width": 100,
}


def _print_help(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """-h prints usage and exits 1, like any other refusal to run."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(ctx.get_help(), err=True)
    ctx.exit(1)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option("-w", "--web", type=click.Choice(["apache", "nginx"]), is_flag=False, flag_value="nginx",
              default=None, help="Web server (default: nginx). nginx implies -f")
@click.option("-p", "--php", is_flag=False, flag_value=DEFAULT_PHP_VERSION, default=None,
              help=f"Ensure PHP is installed; install this version if not (default: {DEFAULT_PHP_VERSION})")
@click.option("-P", "--php-alongside", is_flag=False, flag_value=DEFAULT_PHP_VERSION, default=None,
              help="Ensure this PHP version is installed, regardless of any PHP already present")
@click.option("-f", "--fpm", is_flag=True, help="Enable PHP-FPM for the web server (requires -w)")
@click.option("-d", "--database", type=click.Choice(["mysql", "mysqli", "pgsql"]), is_flag=False,
              flag_value="mysql", default=None, help="Database engine (default: mysql)")
@click.option("-m", "--moodle", is_flag=False, flag_value=DEFAULT_MOODLE_VERSION, default=None,
              help=f"Deploy Moodle of this release code (default: {DEFAULT_MOODLE_VERSION}, e.g. 405 for 4.5)")
@click.option("-M", "--memcached", type=click.Choice(["local", "network"]), is_flag=False,
              flag_value="network", default=None, help="Install Memcached (default: network)")
@click.option("-S", "--self-signed", is_flag=True, help="Create a self-signed certificate for the site")
@click.option("-a", "--acme-cert", is_flag=True, help="Request an ACME certificate for the site")
@click.option("-r", "--prometheus", is_flag=True, help="Install Prometheus with exporters for the web stack")
@click.option("-n", "--nop", is_flag=True, help="Dry run (show what would change without changing it)")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("-c", "--ci", is_flag=True, help="CI mode (no prompts; sudo only when not root)")
@click.option("-s", "--sudo", is_flag=True, help="Run commands through sudo")
@click.option("--site-name", default=DEFAULT_SITE_NAME, show_default=True, help="Site domain name")
@click.option("--acme-email", default=None, help="ACME account email (default: admin@<site-name>)")
@click.option("--acme-provider", type=click.Choice(["staging", "production"]), default="staging",
              show_default=True, help="ACME directory")
@click.option("--log-dir", default=DEFAULT_LOG_DIR, show_default=True, help="Directory for the run log file")
@click.option("--db-password", default=None,
              help="Password of an existing database user (when the database was provisioned earlier)")
@click.option("-h", "--help", is_flag=True, is_eager=True, expose_value=False, callback=_print_help,
              help="Show this message and exit")
@click.version_option(__version__, "--version", prog_name="laemp")
def cli(web: Optional[str], php: Optional[str], php_alongside: Optional[str], fpm: bool,
        database: Optional[str], moodle: Optional[str], memcached: Optional[str], self_signed: bool,
        acme_cert: bool, prometheus: bool, nop: bool, verbose: bool, ci: bool, sudo: bool,
        site_name: str, acme_email: Optional[str], acme_provider: str, log_dir: str,
        db_password: Optional[str]) -> int:
    """Provision a LAMP/LEMP stack and deploy Moodle, idempotently."""
    config = build_configuration(
        web=web,
        php=php,
        php_alongside=php_alongside,
        fpm=fpm,
        database=database,
        moodle=moodle,
        memcached=memcached,
        self_signed=self_signed,
        acme=acme_cert,
        prometheus=prometheus,
        dry_run=nop,
        verbose=verbose,
        ci=ci,
        sudo=sudo,
        site_name=site_name,
        acme_email=acme_email,
        acme_provider=acme_provider,
        log_dir=log_dir or None,
        db_password=db_password,
    )

    setup_logging("verbose" if config.verbose else "info", log_dir=config.log_dir)
    log_file = current_log_file()
    if log_file:
        logger.verbose(f"Logging to {log_file}")
    if config.dry_run:
        logger.info("Dry run: no changes will be made")

    transport = LocalTransport()
    config = resolve_privilege(config, transport)
    ctx = create_context(config, transport)
    provision(ctx)
    return 0


def usage() -> str:
    """Help text of the command."""
    return cli.get_help(click.Context(cli, info_name="laemp"))


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point. Returns the process exit code."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        click.echo(usage(), err=True)
        return 1

    try:
        code = cli.main(args=args, prog_name="laemp", standalone_mode=False)
    except click.UsageError as e:
        click.echo(f"Error: {e.format_message()}", err=True)
        click.echo(usage(), err=True)
        return 1
    except ConfigurationError as e:
        logger.error(str(e))
        click.echo(usage(), err=True)
        return 1
    except CommandError as e:
        logger.error(str(e))
        tail = e.output_tail()
        if tail:
            logger.error(tail)
        return 1
    except LaempError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        # e.g. a write under /etc without root or -s
        logger.error(str(e))
        return 1

    return code if isinstance(code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
