"""
Memcached - session cache for Moodle.
"""

from typing import List

from laemp.config import MemcachedMode
from laemp.core.resource import Resource, State
from laemp.resources import FileValue, Package, Service
from laemp.stack.base import Component
from laemp.stack.php import Php

MEMCACHED_CONF = "/etc/memcached.conf"
LOCAL_ADDRESS = "127.0.0.1"
PORT = "11211"


def session_save_path() -> str:
    return f"{LOCAL_ADDRESS}:{PORT}"


class Memcached(Component):
    """
    Memcached server plus the PHP extension.

    In local mode the daemon listens on the loopback address only.
    """

    name = "memcached"
    label = "Memcached"

    def probe(self) -> State:
        if not self.ctx.runner.which("memcached"):
            return State.ABSENT
        return State.PRESENT

    def resources(self) -> List[Resource]:
        php = Php(self.ctx)
        resources: List[Resource] = [
            Package("memcached"),
            php.extensions(["memcached"]),
        ]
        watched = []
        if self.config.memcached is MemcachedMode.LOCAL:
            listen = FileValue(
                MEMCACHED_CONF,
                pattern=r"^#?\s*-l\s+\S+\s*$",
                replacement=f"-l {LOCAL_ADDRESS}",
                present=rf"^-l\s+{LOCAL_ADDRESS}\s*$",
                key="listen",
                description=f"bind memcached to {LOCAL_ADDRESS}",
            )
            resources.append(listen)
            watched.append(listen)

        resources.append(Service("memcached", running=True, enabled=True, restart_on=watched))
        return resources
