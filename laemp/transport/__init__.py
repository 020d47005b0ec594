"""Transport layer for running commands and touching files."""

from laemp.transport.base import FileStat, Transport
from laemp.transport.local import LocalTransport

__all__ = ["FileStat", "Transport", "LocalTransport"]
