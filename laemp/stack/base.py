"""
Component base class.

A component groups the resources of one provisioning stage (PHP, a web
server, a database engine, ...) behind the verify/ensure pair:

- verify() inspects the host and reports a State; with exit_on_failure it
  raises DependencyError when the component is absent, unless an earlier
  stage of the same dry run planned it.
- ensure() applies the component's resources through the Executor.
"""

from abc import ABC, abstractmethod
from typing import List

from laemp.core.context import ExecutionContext
from laemp.core.errors import DependencyError, DetectionError
from laemp.core.executor import ApplyResult, Executor
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources import Repository

logger = get_logger(__name__)


class Component(ABC):
    """
    One provisioning stage.

    Subclasses set `name` (the key used for dry-run planning) and `label`
    (used in operator messages), and implement probe() and resources().
    """

    name = ""
    label = ""

    def __init__(self, ctx: ExecutionContext):
        self.ctx = ctx
        self.config = ctx.config

    @abstractmethod
    def probe(self) -> State:
        """Inspect the host without mutating it."""
        pass

    @abstractmethod
    def resources(self) -> List[Resource]:
        """Resources that make up this component, in apply order."""
        pass

    def verify(self, exit_on_failure: bool = False) -> State:
        """
        Report the component state.

        Raises:
            DependencyError: if exit_on_failure is set and the component is
                absent and was not planned earlier in this dry run
        """
        state = self.probe()
        logger.verbose(f"{self.label}: {state.value}")

        if exit_on_failure and state is State.ABSENT:
            if self.ctx.was_planned(self.name):
                logger.verbose(f"{self.label} would have been installed earlier in this dry run")
                return state
            raise DependencyError(f"{self.label} is required but not installed")
        return state

    def ensure(self) -> ApplyResult:
        """Bring the component to its desired state."""
        logger.info(f"Ensuring {self.label}...")
        result = Executor(self.ctx).ensure(self.resources())
        self.ctx.mark_planned(self.name)

        if result.changed:
            logger.verbose(f"{self.label}: {len(result.changed_resources)} resource(s) changed")
        else:
            logger.verbose(f"{self.label} is already in the desired state")
        return result


def vendor_repository(ctx: ExecutionContext, product: str) -> Repository:
    """
    Third-party repository carrying current php/apache2 builds.

    Ubuntu uses the ondrej PPAs, Debian the equivalent Sury repositories.

    Raises:
        DetectionError: on any other distribution
    """
    distro = ctx.distro
    if distro.is_ubuntu:
        return Repository(f"ondrej-{product}", ppa=f"ppa:ondrej/{product}")
    elif distro.is_debian:
        keyring = f"/usr/share/keyrings/sury-{product}.gpg"
        return Repository(
            f"sury-{product}",
            repo=f"deb [signed-by={keyring}] https://packages.sury.org/{product}/ {distro.codename} main",
            key_url=f"https://packages.sury.org/{product}/apt.gpg",
            keyring=keyring,
        )
    raise DetectionError(f"Unsupported distribution: {distro.id}")
