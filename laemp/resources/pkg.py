"""
Package resource - manage apt packages.

Installed state comes from the package database (dpkg), not from
looking for a command on PATH.
"""

from typing import Any, Dict, List, Optional, Union

from laemp.core.resource import Action, Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)


def package_installed(ctx, package: str) -> bool:
    """True when dpkg reports the package as installed."""
    result = ctx.runner.query(["dpkg-query", "-W", "-f=${Status}", package])
    return result.ok and result.output.strip().endswith("install ok installed")


def refresh_package_cache(ctx) -> None:
    """apt-get update, at most once per run unless a repository was added."""
    if not ctx.apt_cache_stale:
        return
    ctx.runner.apt(["update"])
    ctx.apt_cache_stale = False


class Package(Resource):
    """
    Package resource for installing system packages.

    Only the missing subset of the requested packages is installed.

    Examples:
        # Single package
        Package("nginx")

        # Multiple packages with an operator-facing label
        Package(["php8.4-cli", "php8.4-common"], label="php 8.4")

        # Smaller footprint
        Package(["certbot"], no_install_recommends=True)
    """

    def __init__(
        self,
        name: Union[str, List[str]],
        label: Optional[str] = None,
        no_install_recommends: bool = False,
        **options,
    ):
        """
        Initialize package resource.

        Args:
            name: Package name or list of package names
            label: What the packages are, for log and dry-run messages
            no_install_recommends: Skip recommended/suggested packages
        """
        packages = name if isinstance(name, list) else [name]
        if not packages:
            raise ValueError("Package requires at least one package name")

        super().__init__(packages[0] if len(packages) == 1 else ",".join(packages), **options)
        self.packages = packages
        self.label = label
        self.no_install_recommends = no_install_recommends
        self._missing: List[str] = []

    def resource_type(self) -> str:
        return "pkg"

    def check(self, ctx) -> Dict[str, Any]:
        """Check which packages are installed."""
        self._missing = [p for p in self.packages if not package_installed(ctx, p)]
        return {
            "exists": not self._missing,
            "missing": list(self._missing),
        }

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        """Install the missing packages."""
        if plan.action != Action.CREATE:
            return

        logger.verbose(f"Installing missing packages: {' '.join(self._missing)}")
        refresh_package_cache(ctx)

        args = ["install", "--yes"]
        if self.no_install_recommends:
            args.append("--no-install-recommends")
        ctx.runner.apt(args + self._missing)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"install {self.label or ' '.join(self._missing or self.packages)}"
