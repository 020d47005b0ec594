"""
Shared fixtures: an in-memory host standing in for the real machine.
"""

import posixpath
from contextlib import contextmanager
from typing import Dict, List, Optional, Set, Tuple

import pytest

from laemp.config import build_configuration
from laemp.core.context import ExecutionContext
from laemp.core.resource import Distro
from laemp.core.runner import CommandRunner
from laemp.transport import FileStat, Transport

BASE_TOOLS = ["apt-get", "add-apt-repository", "tar", "unzip", "wget"]

UBUNTU = Distro(id="ubuntu", codename="noble", version="24.04")
DEBIAN = Distro(id="debian", codename="bookworm", version="12")


class FakeTransport(Transport):
    """
    Mock transport for testing.

    Files and directories live in dicts, `which` answers from a set of
    command names, and command output is scripted by argv prefix. The
    most recently scripted matching prefix wins; anything unscripted
    returns ("", default_exit_code). The last element of a scripted
    prefix also matches an argument that merely starts with it.
    """

    def __init__(self, commands=(), files: Optional[Dict[str, str]] = None, default_exit_code: int = 0):
        self.on_path: Set[str] = set(commands)
        self.files: Dict[str, bytes] = {}
        self.stats: Dict[str, FileStat] = {}
        self.dirs: Set[str] = set()
        self.responses: List[Tuple[List[str], str, int]] = []
        self.commands: List[List[str]] = []
        self.inputs: List[Optional[bytes]] = []
        self.locked: List[str] = []
        self.default_exit_code = default_exit_code
        for path, content in (files or {}).items():
            self.add_file(path, content)

    def respond(self, prefix: List[str], output: str = "", exit_code: int = 0) -> None:
        self.responses.insert(0, (list(prefix), output, exit_code))

    def add_file(self, path: str, content: str = "", owner: str = "root", group: str = "root",
                 mode: int = 0o644) -> None:
        self.files[path] = content.encode("utf-8")
        self.stats[path] = FileStat(owner=owner, group=group, mode=mode, is_dir=False, is_link=False)

    def add_dir(self, path: str, owner: str = "root", group: str = "root", mode: int = 0o755) -> None:
        self.dirs.add(path)
        self.stats[path] = FileStat(owner=owner, group=group, mode=mode, is_dir=True, is_link=False)

    def text(self, path: str) -> str:
        return self.files[path].decode("utf-8")

    def ran(self, *prefix: str) -> bool:
        """True when a command starting with prefix was executed."""
        return any(command[:len(prefix)] == list(prefix) for command in self.commands)

    @staticmethod
    def _matches(prefix: List[str], args: List[str]) -> bool:
        # the last prefix element may be the start of the argument (e.g. a SQL statement)
        if len(args) < len(prefix):
            return False
        head, last = prefix[:-1], prefix[-1]
        return list(args[:len(head)]) == head and args[len(head)].startswith(last)

    def run_command(self, args, input=None, env=None):
        self.commands.append(list(args))
        self.inputs.append(input)
        for prefix, output, code in self.responses:
            if self._matches(prefix, args):
                return output, code
        return "", self.default_exit_code

    def read_file(self, path: str) -> bytes:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_file(self, path: str, content: bytes, mode: int = 0o644) -> None:
        self.files[path] = content
        self.stats[path] = FileStat(owner="root", group="root", mode=mode, is_dir=False, is_link=False)

    def file_exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def stat(self, path: str) -> Optional[FileStat]:
        return self.stats.get(path)

    def list_dir(self, path: str) -> List[str]:
        entries = [p for p in list(self.files) + list(self.dirs) if posixpath.dirname(p) == path]
        return sorted(posixpath.basename(p) for p in entries)

    def which(self, command: str) -> Optional[str]:
        return f"/usr/bin/{command}" if command in self.on_path else None

    @contextmanager
    def lock(self, path: str):
        self.locked.append(path)
        yield


@pytest.fixture
def transport():
    """Host where every tool exists and every command succeeds silently."""
    return FakeTransport(commands=BASE_TOOLS)


@pytest.fixture
def clean_host():
    """Freshly installed host: nothing answers queries, nothing is installed."""
    return FakeTransport(commands=BASE_TOOLS, default_exit_code=1)


@pytest.fixture
def make_context():
    """Factory for an ExecutionContext on a fake transport."""

    def _make(transport: FakeTransport, distro: Distro = UBUNTU, **options) -> ExecutionContext:
        config = build_configuration(**options)
        runner = CommandRunner(transport, dry_run=config.dry_run, use_sudo=config.use_sudo)
        return ExecutionContext(config=config, runner=runner, distro=distro)

    return _make
