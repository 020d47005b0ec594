"""
Monitoring - Prometheus, node exporter and the exporters matching the
selected web stack.

Release binaries are installed once under /usr/local/bin; every program
runs as the prometheus system user from its own systemd unit.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from laemp.config import WebServer as WebServerKind
from laemp.core.resource import Resource, State
from laemp.logging import get_logger
from laemp.resources import Exec, File, FileBlock, Service, SystemUser
from laemp.stack.apache import Apache
from laemp.stack.base import Component
from laemp.stack.php import Php
from laemp.template import render_resource

logger = get_logger(__name__)

BIN_DIR = "/usr/local/bin"
UNIT_DIR = "/etc/systemd/system"
CONFIG_DIR = "/etc/prometheus"
DATA_DIR = "/var/lib/prometheus"
PROMETHEUS_USER = "prometheus"

NGINX_STATUS_LISTEN = "127.0.0.1:8080"
FPM_STATUS_LISTEN = "127.0.0.1:9001"


@dataclass(frozen=True)
class Release:
    """
    A released program.

    Args:
        name: Program (and unit) name
        version: Release version
        url: Download URL
        binaries: Files copied to /usr/local/bin; the first one guards the install
        unpacked: Directory the tarball unpacks to under /tmp ("" = /tmp itself,
            None = the URL is the binary itself)
    """
    name: str
    version: str
    url: str
    binaries: Tuple[str, ...]
    unpacked: Optional[str] = ""

    @property
    def target(self) -> str:
        return f"{BIN_DIR}/{self.binaries[0]}"

    @property
    def source_dir(self) -> str:
        return f"/tmp/{self.unpacked}" if self.unpacked else "/tmp"


PROMETHEUS = Release(
    "prometheus", "2.47.2",
    "https://github.com/prometheus/prometheus/releases/download/v2.47.2/prometheus-2.47.2.linux-amd64.tar.gz",
    ("prometheus", "promtool"),
    unpacked="prometheus-2.47.2.linux-amd64",
)
NODE_EXPORTER = Release(
    "node_exporter", "1.7.0",
    "https://github.com/prometheus/node_exporter/releases/download/v1.7.0/node_exporter-1.7.0.linux-amd64.tar.gz",
    ("node_exporter",),
    unpacked="node_exporter-1.7.0.linux-amd64",
)
APACHE_EXPORTER = Release(
    "apache_exporter", "1.0.3",
    "https://github.com/Lusitaniae/apache_exporter/releases/download/v1.0.3/apache_exporter-1.0.3.linux-amd64.tar.gz",
    ("apache_exporter",),
    unpacked="apache_exporter-1.0.3.linux-amd64",
)
NGINX_EXPORTER = Release(
    "nginx_exporter", "0.11.0",
    "https://github.com/nginxinc/nginx-prometheus-exporter/releases/download/v0.11.0/"
    "nginx-prometheus-exporter_0.11.0_linux_amd64.tar.gz",
    ("nginx-prometheus-exporter",),
)
PHPFPM_EXPORTER = Release(
    "php-fpm_exporter", "2.2.0",
    "https://github.com/hipages/php-fpm_exporter/releases/download/v2.2.0/php-fpm_exporter_2.2.0_linux_amd64",
    ("php-fpm_exporter",),
    unpacked=None,
)

# scrape job -> exporter address
SCRAPE_TARGETS = {
    "apache": "localhost:9117",
    "nginx": "localhost:9113",
    "php-fpm": "localhost:9253",
}


def release_resources(release: Release) -> List[Resource]:
    """Download, unpack and install a release once."""
    target = release.target
    if release.unpacked is None:
        return [
            Exec(f"{release.name}-download",
                 command=["wget", "-O", target, release.url],
                 creates=target,
                 description=f"download {release.name} {release.version}"),
            File(target, mode=0o755, owner=PROMETHEUS_USER, group=PROMETHEUS_USER),
        ]

    archive = f"/tmp/{release.name}.tar.gz"
    sources = [f"{release.source_dir}/{binary}" for binary in release.binaries]
    leftovers = [archive] + ([release.source_dir] if release.unpacked else sources)
    return [
        Exec(f"{release.name}-download",
             command=["wget", "-O", archive, release.url],
             creates=target,
             description=f"download {release.name} {release.version}"),
        Exec(f"{release.name}-unpack",
             command=["tar", "-xzf", archive, "-C", "/tmp"],
             creates=target),
        Exec(f"{release.name}-install",
             command=["install", "-m", "0755", "-o", PROMETHEUS_USER, "-g", PROMETHEUS_USER]
             + sources + [BIN_DIR],
             creates=target,
             description=f"install {release.name} into {BIN_DIR}"),
        Exec(f"{release.name}-cleanup",
             command=["rm", "-rf"] + leftovers,
             only_if=["test", "-e", archive]),
    ]


def unit_resources(name: str, template: str, substitutions: Dict[str, str],
                   restart_on: Optional[List] = None) -> List[Resource]:
    """systemd unit plus the service it runs, restarted when the unit changes."""
    unit = File(f"{UNIT_DIR}/{name}.service", template=template, substitutions=substitutions, mode=0o644)
    return [unit, Service(name, running=True, enabled=True, restart_on=[unit] + (restart_on or []))]


def exporter_unit(release: Release, description: str, arguments: str = "",
                  environment: str = "") -> List[Resource]:
    exec_start = release.target + (f" {arguments}" if arguments else "")
    return unit_resources(
        release.name,
        "exporter.service.j2",
        {
            "description": description,
            "environment": f'Environment="{environment}"\n' if environment else "",
            "exec_start": exec_start,
        },
    )


class Monitoring(Component):
    """Prometheus plus exporters."""

    name = "prometheus"
    label = "Prometheus monitoring"

    def probe(self) -> State:
        if self.ctx.runner.file_exists(PROMETHEUS.target):
            return State.PRESENT
        return State.ABSENT

    def scrape_jobs(self) -> List[str]:
        jobs = []
        if self.config.web_server is WebServerKind.APACHE:
            jobs.append("apache")
        elif self.config.web_server is WebServerKind.NGINX:
            jobs.append("nginx")
        if self.config.fpm:
            jobs.append("php-fpm")
        return jobs

    def prometheus_resources(self) -> List[Resource]:
        extra_jobs = "".join(
            render_resource("prometheus-job.yml.j2", {"job": job, "target": SCRAPE_TARGETS[job]})
            for job in self.scrape_jobs()
        )
        prometheus_yml = File(
            f"{CONFIG_DIR}/prometheus.yml",
            template="prometheus.yml.j2",
            substitutions={"extra_jobs": extra_jobs},
            owner=PROMETHEUS_USER,
            group=PROMETHEUS_USER,
            mode=0o644,
        )
        source = PROMETHEUS.source_dir
        resources: List[Resource] = [
            SystemUser(PROMETHEUS_USER, group=True, create_home=False),
            File(CONFIG_DIR, ensure="directory", owner=PROMETHEUS_USER, group=PROMETHEUS_USER),
            File(DATA_DIR, ensure="directory", owner=PROMETHEUS_USER, group=PROMETHEUS_USER),
        ]
        release = release_resources(PROMETHEUS)
        # consoles come out of the same tarball, before its cleanup
        resources += release[:-1]
        resources.append(Exec(
            "prometheus-consoles",
            command=["cp", "-r", f"{source}/consoles", f"{source}/console_libraries", f"{CONFIG_DIR}/"],
            creates=f"{CONFIG_DIR}/consoles",
            only_if=["test", "-d", source],
            description=f"install Prometheus consoles into {CONFIG_DIR}",
        ))
        resources.append(release[-1])
        resources.append(prometheus_yml)

        unit = unit_resources("prometheus", "prometheus.service.j2", {"binary": PROMETHEUS.target})
        resources += unit
        # ExecReload re-reads prometheus.yml
        resources.append(Service("prometheus", reload_on=[prometheus_yml]))
        return resources

    def node_exporter_resources(self) -> List[Resource]:
        return release_resources(NODE_EXPORTER) + exporter_unit(NODE_EXPORTER, "Node Exporter")

    def apache_exporter_resources(self) -> List[Resource]:
        apache = Apache(self.ctx)
        status_module = apache.module("status")
        status_conf = File(
            "/etc/apache2/conf-available/server-status.conf",
            template="apache-server-status.conf.j2",
            mode=0o644,
        )
        enable_conf = apache.conf("server-status")
        return (
            [status_module, status_conf, enable_conf,
             apache.service(reload_on=[status_module, status_conf, enable_conf])]
            + release_resources(APACHE_EXPORTER)
            + exporter_unit(APACHE_EXPORTER, "Apache Exporter",
                            arguments="--scrape_uri=http://localhost/server-status?auto")
        )

    def nginx_exporter_resources(self) -> List[Resource]:
        stub_status = File(
            "/etc/nginx/sites-available/stub_status",
            template="nginx-stub-status.conf.j2",
            substitutions={"listen": NGINX_STATUS_LISTEN},
            mode=0o644,
        )
        link = File("/etc/nginx/sites-enabled/stub_status", ensure="link", target=stub_status.path)
        return (
            [stub_status, link, Service("nginx", running=True, reload_on=[stub_status, link])]
            + release_resources(NGINX_EXPORTER)
            + exporter_unit(NGINX_EXPORTER, "Nginx Prometheus Exporter",
                            arguments=f"-nginx.scrape-uri=http://{NGINX_STATUS_LISTEN}/nginx_status")
        )

    def phpfpm_exporter_resources(self) -> List[Resource]:
        php = Php(self.ctx)
        resources: List[Resource] = []
        www_pool = f"/etc/php/{php.version}/fpm/pool.d/www.conf"
        if self.ctx.runner.file_exists(www_pool):
            status = FileBlock(
                www_pool,
                marker="pm.status_path",
                block=f"\n; Enable status page\npm.status_path = /status\npm.status_listen = {FPM_STATUS_LISTEN}\n",
                description=f"enable the PHP-FPM status page on {FPM_STATUS_LISTEN}",
            )
            resources += [status, php.fpm_service(restart_on=[status])]
        else:
            logger.verbose(f"{www_pool} not found; PHP-FPM status page not enabled")

        return (
            resources
            + release_resources(PHPFPM_EXPORTER)
            + exporter_unit(PHPFPM_EXPORTER, "PHP-FPM Prometheus Exporter",
                            environment=f"PHP_FPM_SCRAPE_URI=tcp://{FPM_STATUS_LISTEN}/status")
        )

    def resources(self) -> List[Resource]:
        resources = self.prometheus_resources() + self.node_exporter_resources()
        if self.config.web_server is WebServerKind.APACHE:
            resources += self.apache_exporter_resources()
        elif self.config.web_server is WebServerKind.NGINX:
            resources += self.nginx_exporter_resources()
        if self.config.fpm:
            resources += self.phpfpm_exporter_resources()
        return resources
