"""
Local transport - run commands on local machine.
"""

import fcntl
import grp
import os
import pwd
import shutil
import stat as stat_module
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from laemp.transport.base import FileStat, Transport


class LocalTransport(Transport):
    """
    Local transport for running commands on the local machine.

    Uses subprocess for command execution. Commands inherit stdin-less
    execution and block until they exit; there are no timeouts.
    """

    def run_command(
        self,
        args: List[str],
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, int]:
        """
        Run command from list of arguments.

        Returns:
            Tuple of (combined stdout/stderr, exit_code)
        """
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        try:
            result = subprocess.run(
                args,
                input=input if input is not None else b"",
                capture_output=True,
                env=full_env,
            )
        except FileNotFoundError:
            return f"{args[0]}: command not found", 127

        output = result.stdout.decode("utf-8", errors="replace")
        output += result.stderr.decode("utf-8", errors="replace")
        return output, result.returncode

    def read_file(self, path: str) -> bytes:
        """Read file content."""
        return Path(path).read_bytes()

    def write_file(self, path: str, content: bytes, mode: int = 0o644) -> None:
        """Write content to file; the file never exists with a looser mode."""
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        try:
            os.fchmod(fd, mode)
            os.write(fd, content)
        finally:
            os.close(fd)

    def file_exists(self, path: str) -> bool:
        """Check if path exists (a dangling symlink counts)."""
        return os.path.lexists(path)

    def stat(self, path: str) -> Optional[FileStat]:
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return None

        try:
            owner = pwd.getpwuid(st.st_uid).pw_name
        except KeyError:
            owner = str(st.st_uid)
        try:
            group = grp.getgrgid(st.st_gid).gr_name
        except KeyError:
            group = str(st.st_gid)

        return FileStat(
            owner=owner,
            group=group,
            mode=stat_module.S_IMODE(st.st_mode),
            is_dir=stat_module.S_ISDIR(st.st_mode),
            is_link=stat_module.S_ISLNK(st.st_mode),
        )

    def list_dir(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(path))
        except FileNotFoundError:
            return []

    def which(self, command: str) -> Optional[str]:
        return shutil.which(command)

    @contextmanager
    def lock(self, path: str) -> Iterator[None]:
        """Exclusive flock on path, released when the block exits."""
        fd = os.open(path, os.O_RDONLY)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
