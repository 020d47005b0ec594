"""
Package manager preflight.

Every later stage shells out to apt and downloads archives, so the
required tools are checked before anything is installed.
"""

from typing import List

from laemp.core.errors import DependencyError
from laemp.core.executor import ApplyResult
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources.pkg import refresh_package_cache
from laemp.stack.base import Component

logger = get_logger(__name__)

DOWNLOAD_TOOLS = ("tar", "unzip", "wget")


class PackageManager(Component):
    """apt plus the archive and download tools."""

    name = "package-manager"
    label = "Package manager"

    def required_tools(self) -> List[str]:
        tools = ["apt-get"]
        if self.ctx.distro.is_ubuntu:
            tools.append("add-apt-repository")
        tools.extend(DOWNLOAD_TOOLS)
        return tools

    def missing_tools(self) -> List[str]:
        return [tool for tool in self.required_tools() if not self.ctx.runner.which(tool)]

    def probe(self) -> State:
        missing = self.missing_tools()
        if missing:
            logger.verbose(f"Missing tools: {', '.join(missing)}")
            return State.ABSENT
        return State.PRESENT

    def verify(self, exit_on_failure: bool = False) -> State:
        state = self.probe()
        if exit_on_failure and state is State.ABSENT:
            raise DependencyError(f"Required tools are not installed: {', '.join(self.missing_tools())}")
        return state

    def resources(self) -> List[Resource]:
        return []

    def ensure(self) -> ApplyResult:
        logger.info("Checking package manager...")
        self.verify(exit_on_failure=True)
        refresh_package_cache(self.ctx)
        self.ctx.mark_planned(self.name)
        return ApplyResult()
