"""
Command runner - the single chokepoint for external processes.

Every command is logged (shell-quoted) at verbose level before it runs.
Mutating commands are skipped in dry-run mode and return a synthetic
success. With privilege escalation enabled commands are prefixed with sudo.
"""

import shlex
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

from laemp.core.errors import CommandError
from laemp.logging import get_logger
from laemp.transport import FileStat, Transport

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Outcome of one command."""
    args: List[str]
    output: str
    exit_code: int
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """
    Runs commands and file writes on a transport.

    Example:
        runner = CommandRunner(LocalTransport(), dry_run=True)
        runner.run(["apt-get", "install", "-y", "nginx"], mutating=True)
        # logs "DRY RUN: Would execute: apt-get install -y nginx"
    """

    def __init__(self, transport: Transport, dry_run: bool = False, use_sudo: bool = False):
        self.transport = transport
        self.dry_run = dry_run
        self.use_sudo = use_sudo

    def _escalate(self, args: List[str], env: Optional[Dict[str, str]]):
        if not self.use_sudo:
            return list(args), env
        prefix = ["sudo"]
        if env:
            prefix += ["env"] + [f"{k}={v}" for k, v in env.items()]
        return prefix + list(args), None

    def run(
        self,
        args: List[str],
        mutating: bool = False,
        check: bool = True,
        input: Optional[Union[str, bytes]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """
        Run a command.

        Args:
            args: Command and arguments
            mutating: Command changes host state (skipped in dry-run)
            check: Raise CommandError on a non-zero exit
            input: Data fed to stdin
            env: Extra environment variables

        Returns:
            CommandResult
        """
        full_args, run_env = self._escalate(args, env)
        quoted = shlex.join(full_args)

        if mutating and self.dry_run:
            logger.verbose(f"DRY RUN: Would execute: {quoted}")
            return CommandResult(args=full_args, output="", exit_code=0, skipped=True)

        logger.verbose(f"Preparing to execute: {quoted}")

        if isinstance(input, str):
            input = input.encode("utf-8")

        output, code = self.transport.run_command(full_args, input=input, env=run_env)
        if output.strip():
            logger.debug(output.rstrip())

        if check and code != 0:
            raise CommandError(full_args, code, output)

        return CommandResult(args=full_args, output=output, exit_code=code)

    def query(self, args: List[str], env: Optional[Dict[str, str]] = None) -> CommandResult:
        """Run a read-only command whose exit code is the answer."""
        return self.run(args, mutating=False, check=False, env=env)

    def apt(self, args: List[str]) -> CommandResult:
        """Run a mutating apt-get command non-interactively."""
        return self.run(["apt-get"] + args, mutating=True,
                        env={"DEBIAN_FRONTEND": "noninteractive"})

    def read_file(self, path: str) -> Optional[str]:
        """Read a text file, or None if it doesn't exist."""
        if not self.transport.file_exists(path):
            return None
        try:
            return self.transport.read_file(path).decode("utf-8")
        except PermissionError:
            if not self.use_sudo:
                raise
            return self.run(["cat", path]).output

    def write_file(
        self,
        path: str,
        content: Union[str, bytes],
        mode: int = 0o644,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """
        Write a file created with its final mode.

        Escalated writes stream the content through install(1) so the file
        never exists with looser permissions.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")

        if self.dry_run:
            logger.verbose(f"DRY RUN: Would write {path} (mode {mode:04o})")
            return

        if self.use_sudo:
            args = ["install", "-m", f"{mode:04o}"]
            if owner:
                args += ["-o", owner]
            if group:
                args += ["-g", group]
            self.run(args + ["/dev/stdin", path], mutating=True, input=content)
            return

        logger.verbose(f"Writing {path} (mode {mode:04o})")
        self.transport.write_file(path, content, mode)
        if owner or group:
            self.chown(path, owner, group)

    def chown(self, path: str, owner: Optional[str], group: Optional[str], recurse: bool = False) -> None:
        spec = owner or ""
        if group:
            spec += f":{group}"
        args = ["chown"] + (["-R"] if recurse else []) + [spec, path]
        self.run(args, mutating=True)

    def chmod(self, path: str, mode: int, recurse: bool = False) -> None:
        args = ["chmod"] + (["-R"] if recurse else []) + [f"{mode:04o}", path]
        self.run(args, mutating=True)

    def file_exists(self, path: str) -> bool:
        return self.transport.file_exists(path)

    def stat(self, path: str) -> Optional[FileStat]:
        return self.transport.stat(path)

    def list_dir(self, path: str) -> List[str]:
        return self.transport.list_dir(path)

    def which(self, command: str) -> Optional[str]:
        return self.transport.which(command)

    @contextmanager
    def lock(self, path: str) -> Iterator[None]:
        """Exclusive lock on path while a read-modify-write is in progress."""
        logger.debug(f"Acquiring lock on {path}")
        with self.transport.lock(path):
            yield
        logger.debug(f"Released lock on {path}")
