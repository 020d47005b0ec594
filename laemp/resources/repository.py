"""
Repository resource - manage apt package sources.

Supports:
- PPAs (Ubuntu), added with add-apt-repository
- deb lines written to /etc/apt/sources.list.d, optionally with a
  signing key fetched once into a keyring file
- APT pinning preferences
"""

import re
from typing import Any, Dict, List, Optional

from laemp.core.errors import DependencyError
from laemp.core.resource import Action, Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)

SOURCES_LIST = "/etc/apt/sources.list"
SOURCES_DIR = "/etc/apt/sources.list.d"


def _source_files(ctx) -> List[str]:
    files = [SOURCES_LIST]
    for entry in ctx.runner.list_dir(SOURCES_DIR):
        if entry.endswith(".list") or entry.endswith(".sources"):
            files.append(f"{SOURCES_DIR}/{entry}")
    return files


def _strip_options(line: str) -> str:
    """deb [signed-by=...] URL suite comp -> deb URL suite comp"""
    return re.sub(r"^deb\s+\[[^\]]*\]\s+", "deb ", line.strip())


class Repository(Resource):
    """
    Repository resource for third-party apt sources.

    Before adding anything the existing source definitions are searched
    for an equivalent entry.

    Examples:
        # Add PPA (Ubuntu)
        Repository("ondrej-php", ppa="ppa:ondrej/php")

        # Add Sury repository (Debian) with its signing key
        Repository("sury-php",
                   repo="deb [signed-by=/usr/share/keyrings/sury-php.gpg] https://packages.sury.org/php/ bookworm main",
                   key_url="https://packages.sury.org/php/apt.gpg",
                   keyring="/usr/share/keyrings/sury-php.gpg")
    """

    def __init__(
        self,
        name: str,
        repo: Optional[str] = None,
        ppa: Optional[str] = None,
        key_url: Optional[str] = None,
        keyring: Optional[str] = None,
        dearmor: bool = False,
        filename: Optional[str] = None,
        **options,
    ):
        """
        Initialize repository resource.

        Args:
            name: Repository identifier
            repo: Repository line ("deb [options] URL suite components")
            ppa: PPA name (Ubuntu only, e.g., "ppa:ondrej/php")
            key_url: URL of the signing key
            keyring: Where the signing key is stored
            dearmor: Convert an ASCII-armored key with gpg --dearmor
            filename: Sources file name (default: {name}.list)
        """
        super().__init__(name, **options)

        if not repo and not ppa:
            raise ValueError("Repository requires one of: repo, ppa")
        if key_url and not keyring:
            raise ValueError("Repository key_url requires a keyring path")

        self.repo = repo
        self.ppa = ppa
        self.key_url = key_url
        self.keyring = keyring
        self.dearmor = dearmor
        self.filename = filename or f"{name}.list"

    def resource_type(self) -> str:
        return "repository"

    @property
    def source_file(self) -> str:
        return f"{SOURCES_DIR}/{self.filename}"

    def _configured(self, ctx) -> bool:
        if self.ppa:
            # add-apt-repository writes "deb https://ppa.launchpadcontent.net/ondrej/php/ubuntu ..."
            needle = self.ppa[len("ppa:"):] if self.ppa.startswith("ppa:") else self.ppa
        else:
            needle = _strip_options(self.repo)[len("deb "):]

        for path in _source_files(ctx):
            content = ctx.runner.read_file(path)
            if not content:
                continue
            for line in content.splitlines():
                line = line.strip()
                if line.startswith("#"):
                    continue
                if self.ppa and needle in line:
                    return True
                if line.startswith("deb") and needle in _strip_options(line):
                    return True
                # deb822 .sources files list URIs on their own line
                if line.startswith("URIs:") and needle.split()[0] in line:
                    return True
        return False

    def check(self, ctx) -> Dict[str, Any]:
        """Check whether an equivalent source entry exists."""
        state = {"exists": self._configured(ctx)}
        if self.keyring:
            state["keyring"] = ctx.runner.file_exists(self.keyring)
        return state

    def desired_state(self) -> Dict[str, Any]:
        state = {"exists": True}
        if self.keyring:
            state["keyring"] = True
        return state

    def apply(self, plan: Plan, ctx) -> None:
        """Add repository and signing key."""
        if self.keyring and not ctx.runner.file_exists(self.keyring):
            self._install_key(ctx)

        if plan.action == Action.CREATE:
            logger.info(f"Adding repository {self.ppa or self.name}...")
            if self.ppa:
                if not ctx.runner.which("add-apt-repository"):
                    raise DependencyError(
                        "add-apt-repository not found. Install software-properties-common first."
                    )
                ctx.runner.run(["add-apt-repository", "-y", self.ppa], mutating=True,
                               env={"DEBIAN_FRONTEND": "noninteractive"})
            else:
                ctx.runner.write_file(self.source_file, f"{self.repo}\n", mode=0o644)

        ctx.apt_cache_stale = True

    def _install_key(self, ctx) -> None:
        """Download the signing key into its keyring file."""
        logger.verbose(f"Installing signing key {self.key_url} into {self.keyring}")
        directory = self.keyring.rsplit("/", 1)[0]
        ctx.runner.run(["install", "-d", "-m", "0755", directory], mutating=True)

        if self.dearmor:
            download = ctx.runner.run(["wget", "-qO-", self.key_url], mutating=True)
            ctx.runner.run(["gpg", "--dearmor", "--yes", "-o", self.keyring],
                           mutating=True, input=download.output)
        else:
            ctx.runner.run(["wget", "-qO", self.keyring, self.key_url], mutating=True)

    def describe(self, plan: Plan) -> str:
        if self.description:
            return self.description
        return f"add repository {self.ppa or self.repo}"
