"""
Base transport interface.

The command runner is the only component that calls the mutating
operations (run_command with a mutating command, write_file).
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple


@dataclass
class FileStat:
    """Ownership and permission bits of a path."""
    owner: str
    group: str
    mode: int
    is_dir: bool
    is_link: bool


class Transport(ABC):
    """
    Abstract base class for command running and file operations.

    Implementations:
    - LocalTransport: Run commands on this host
    """

    @abstractmethod
    def run_command(
        self,
        args: List[str],
        input: Optional[bytes] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[str, int]:
        """
        Run a command from list of arguments (no shell).

        Args:
            args: Command and arguments as list
            input: Bytes fed to the command's stdin
            env: Extra environment variables

        Returns:
            Tuple of (output, exit_code)

        Example:
            output, code = transport.run_command(["dpkg-query", "-W", "nginx"])
        """
        pass

    @abstractmethod
    def read_file(self, path: str) -> bytes:
        """
        Read file content.

        Raises:
            FileNotFoundError: If file doesn't exist
        """
        pass

    @abstractmethod
    def write_file(self, path: str, content: bytes, mode: int = 0o644) -> None:
        """
        Write content to a file, created with its final mode.

        Raises:
            OSError: If write fails
        """
        pass

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a path exists."""
        pass

    @abstractmethod
    def stat(self, path: str) -> Optional[FileStat]:
        """Ownership and mode of a path, or None if it doesn't exist."""
        pass

    @abstractmethod
    def list_dir(self, path: str) -> List[str]:
        """Names in a directory (empty if it doesn't exist)."""
        pass

    @abstractmethod
    def which(self, command: str) -> Optional[str]:
        """Full path of a command on PATH, or None."""
        pass

    @abstractmethod
    @contextmanager
    def lock(self, path: str) -> Iterator[None]:
        """Hold an exclusive lock on path for the duration of the block."""
        yield

    def close(self) -> None:
        """Release transport resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
