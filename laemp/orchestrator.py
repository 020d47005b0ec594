"""
Orchestrator - runs the provisioning stages in their fixed order.

    package manager -> certificate -> PHP -> web server -> memcached
    -> database -> Moodle -> monitoring

A stage runs only when its option was given. The first error ends the
run; there is no rollback, re-running skips what is already in place.
"""

import time
from typing import List

from laemp.config import CertMode
from laemp.core.context import ExecutionContext
from laemp.logging import get_logger
from laemp.stack import (
    Certificates,
    Component,
    Memcached,
    Monitoring,
    Moodle,
    PackageManager,
    Php,
    database_for,
    web_server_for,
)

logger = get_logger(__name__)


def stages(ctx: ExecutionContext) -> List[Component]:
    """Components selected by the configuration, in run order."""
    config = ctx.config
    selected: List[Component] = [PackageManager(ctx)]

    if config.cert_mode is not CertMode.NONE:
        selected.append(Certificates(ctx))
    if config.needs_php:
        selected.append(Php(ctx))
    if config.web_server is not None:
        selected.append(web_server_for(ctx))
    if config.memcached is not None:
        selected.append(Memcached(ctx))
    if config.database is not None:
        selected.append(database_for(ctx))
    if config.moodle_version is not None:
        selected.append(Moodle(ctx))
    if config.prometheus:
        selected.append(Monitoring(ctx))
    return selected


def provision(ctx: ExecutionContext) -> List[str]:
    """
    Run every selected stage.

    Returns:
        The "would ..." intents recorded in dry-run mode (empty otherwise)

    Raises:
        LaempError: from the first stage that fails
    """
    start_time = time.time()
    changed = 0

    for component in stages(ctx):
        result = component.ensure()
        changed += len(result.changed_resources)

    duration = time.time() - start_time
    if ctx.dry_run:
        logger.info(f"Dry run complete: {len(ctx.intents)} change(s) would be made")
    elif changed:
        logger.success(f"Provisioning complete: {changed} change(s) in {duration:.1f}s")
    else:
        logger.success("Provisioning complete: system already in the desired state")
    return list(ctx.intents)
