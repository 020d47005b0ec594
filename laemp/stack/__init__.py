"""Provisioning stages."""

from laemp.stack.base import Component
from laemp.stack.certificates import Certificates
from laemp.stack.database import Database, MariaDB, PostgreSQL, database_for
from laemp.stack.memcached import Memcached
from laemp.stack.monitoring import Monitoring
from laemp.stack.moodle import Moodle
from laemp.stack.php import Php
from laemp.stack.system import PackageManager
from laemp.stack.web import WebServer, web_server_for

__all__ = [
    "Certificates",
    "Component",
    "Database",
    "MariaDB",
    "Memcached",
    "Monitoring",
    "Moodle",
    "PackageManager",
    "Php",
    "PostgreSQL",
    "WebServer",
    "database_for",
    "web_server_for",
]
