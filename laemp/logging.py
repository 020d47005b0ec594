"""
Logging for laemp.

Operator levels follow the provisioning tradition of error / info / verbose /
debug. VERBOSE is registered as a custom level between DEBUG and INFO.

Example:
    from laemp.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ensuring PHP...")
    logger.verbose("All packages are already installed.")
    logger.dry_run("install nginx")
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.theme import Theme

VERBOSE = 15
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_LEVELS = {
    "error": logging.ERROR,
    "info": logging.INFO,
    "verbose": VERBOSE,
    "debug": logging.DEBUG,
}

LAEMP_THEME = Theme({
    "log.time": "dim cyan",
    "log.level.debug": "dim blue",
    "log.level.verbose": "blue",
    "log.level.info": "green",
    "log.level.warning": "yellow",
    "log.level.error": "bold red",
    "log.level.critical": "bold white on red",
    "laemp.success": "bold green",
    "laemp.action.create": "green",
    "laemp.action.update": "yellow",
    "laemp.action.restart": "magenta",
    "laemp.secret": "bold yellow",
    "laemp.dry_run": "cyan",
})

# Global console instance (stderr keeps stdout free for usage text)
console = Console(theme=LAEMP_THEME, stderr=True)

_initialized = False
_log_file: Optional[Path] = None


def setup_logging(
    level: str = "info",
    log_dir: Optional[str] = None,
    show_path: bool = False,
) -> Optional[Path]:
    """
    Configure console and per-invocation file logging.

    Args:
        level: Operator level (error, info, verbose, debug)
        log_dir: Directory for the invocation log file (None = no file)
        show_path: Show source path in console output

    Returns:
        Path of the log file, or None when file logging is disabled

    Note:
        Unlike get_logger(), calling this again replaces the handlers,
        so each CLI invocation gets its own log file.
    """
    global _initialized, _log_file

    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Valid log levels are: {', '.join(LOG_LEVELS)}")

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=show_path,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(LOG_LEVELS[level])
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%Y-%m-%dT%H:%M:%S%z]"))

    handlers = [handler]
    _log_file = None
    warning = None

    if log_dir is not None:
        stamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S%z")
        path = Path(log_dir) / f"laemp_{stamp}.log"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            warning = f"Log file is not writable ({e}). Disabling file logging."
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                                  datefmt="%Y-%m-%dT%H:%M:%S%z")
            )
            handlers.append(file_handler)
            _log_file = path

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)
    _initialized = True

    if warning:
        logging.getLogger("laemp").warning(warning)

    return _log_file


def current_log_file() -> Optional[Path]:
    """Path of the active invocation log file, if any."""
    return _log_file


class LaempLogger:
    """
    laemp-specific logger.

    Wraps a standard logger with the helpers the provisioning code needs.
    """

    def __init__(self, name: str):
        if not _initialized:
            setup_logging()
        self.logger = logging.getLogger(name)
        self.console = console

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, **kwargs)

    def verbose(self, message: str, **kwargs) -> None:
        self.logger.log(VERBOSE, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(message, **kwargs)

    def success(self, message: str) -> None:
        """Print a success line."""
        self.console.print(f"[laemp.success]✓[/laemp.success] {escape(message)}")
        self.logger.debug(message)

    def action(self, action: str, resource_id: str, details: Optional[str] = None) -> None:
        """
        Print a resource action (create/update/restart/reload).

        Args:
            action: Action type
            resource_id: Resource identifier
            details: Optional details about the action
        """
        symbols = {
            "create": "+",
            "update": "~",
            "restart": "↻",
            "reload": "⟳",
        }
        symbol = symbols.get(action.lower(), "•")
        style = "laemp.action.restart" if action in ("restart", "reload") else f"laemp.action.{action.lower()}"

        msg = f"[{style}]{symbol}[/{style}] {escape(resource_id)}"
        if details:
            msg += f" [dim]({escape(details)})[/dim]"

        self.console.print(msg)
        self.logger.debug(f"{action} {resource_id}" + (f" ({details})" if details else ""))

    def dry_run(self, message: str) -> None:
        """Print what a dry run would have done."""
        self.console.print(f"[laemp.dry_run][DRY RUN][/laemp.dry_run] would {escape(message)}")
        self.logger.debug(f"DRY RUN: would {message}")

    def credential_notice(self, title: str, lines: list) -> None:
        """
        Surface a generated secret to the operator.

        Args:
            title: Banner title
            lines: "Label: value" lines to print inside the banner
        """
        separator = "=" * 42
        self.console.print(f"[laemp.secret]{separator}[/laemp.secret]")
        self.console.print(f"[laemp.secret]{escape(title)}[/laemp.secret]")
        self.console.print(f"[laemp.secret]{separator}[/laemp.secret]")
        for line in lines:
            self.console.print(escape(line))
        self.console.print(f"[laemp.secret]{separator}[/laemp.secret]")


def get_logger(name: str) -> LaempLogger:
    """
    Get a LaempLogger for the given module.

    Example:
        logger = get_logger(__name__)
        logger.verbose("Entered php_ensure")
    """
    return LaempLogger(name)
