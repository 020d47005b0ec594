"""
Execution context shared by every provisioning component.

Holds the immutable Configuration, the command runner and the distro
descriptor, plus the per-run bookkeeping used in dry-run mode.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from laemp.config import Configuration
from laemp.core.errors import ConfigurationError
from laemp.core.resource import Distro
from laemp.core.runner import CommandRunner
from laemp.logging import get_logger
from laemp.transport import LocalTransport, Transport

logger = get_logger(__name__)


@dataclass
class ExecutionContext:
    """
    Everything a component needs for one run.

    Attributes:
        config: Resolved configuration
        runner: Command runner (dry-run and sudo aware)
        distro: Detected distribution
        intents: "would ..." phrases recorded during a dry run
        planned: Components that a dry run would have installed
        secrets: Credentials generated or read back during this run, keyed by file path
        php_version: PHP major.minor the stack is built for, once resolved
    """
    config: Configuration
    runner: CommandRunner
    distro: Distro
    intents: List[str] = field(default_factory=list)
    planned: Set[str] = field(default_factory=set)
    secrets: Dict[str, str] = field(default_factory=dict)
    php_version: Optional[str] = None
    apt_cache_stale: bool = True

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def record_intent(self, message: str) -> None:
        self.intents.append(message)
        logger.dry_run(message)

    def mark_planned(self, component: str) -> None:
        if self.dry_run:
            self.planned.add(component)

    def was_planned(self, component: str) -> bool:
        return component in self.planned


def _is_root() -> bool:
    return os.geteuid() == 0


def resolve_privilege(config: Configuration, transport: Transport, is_root: Optional[bool] = None) -> Configuration:
    """
    Decide whether commands run through sudo.

    - CI mode: escalate exactly when not running as root
    - already root: never escalate
    - -s requested: sudo must exist and work without a password prompt

    Raises:
        ConfigurationError: if -s is set but sudo is unusable
    """
    root = _is_root() if is_root is None else is_root

    if config.ci:
        use_sudo = not root
        logger.verbose(f"CI mode: privilege escalation {'on' if use_sudo else 'off'}")
    elif root:
        if config.use_sudo:
            logger.verbose("Already running as root, not using sudo")
        use_sudo = False
    else:
        use_sudo = config.use_sudo

    if use_sudo:
        if transport.which("sudo") is None:
            raise ConfigurationError("Privilege escalation requested but sudo is not installed")
        _, code = transport.run_command(["sudo", "-n", "true"])
        if code != 0:
            raise ConfigurationError("sudo requires a password; run with passwordless sudo or as root")

    if use_sudo == config.use_sudo:
        return config
    return config.with_sudo(use_sudo)


def create_context(
    config: Configuration,
    transport: Optional[Transport] = None,
    distro: Optional[Distro] = None,
) -> ExecutionContext:
    """Build the run context; the distro is detected once here."""
    transport = transport or LocalTransport()
    runner = CommandRunner(transport, dry_run=config.dry_run, use_sudo=config.use_sudo)
    distro = distro or Distro.detect()
    logger.verbose(f"Detected distribution: {distro.id} ({distro.codename})")
    return ExecutionContext(config=config, runner=runner, distro=distro)
