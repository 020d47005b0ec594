"""
Nginx - mainline packages from nginx.org, always fronting PHP-FPM.
"""

from typing import List

from laemp.config import WEB_GROUP, WEB_USER
from laemp.core.errors import DetectionError
from laemp.core.resource import Resource
from laemp.logging import get_logger
from laemp.resources import File, Package, Repository
from laemp.stack.web import VhostSpec, WebServer

logger = get_logger(__name__)

NGINX_DIR = "/etc/nginx"
GLOBAL_DIR = f"{NGINX_DIR}/global"
KEYRING = "/usr/share/keyrings/nginx-archive-keyring.gpg"
SIGNING_KEY_URL = "https://nginx.org/keys/nginx_signing.key"
PIN_FILE = "/etc/apt/preferences.d/99nginx"


class Nginx(WebServer):
    """
    Nginx web server.

    nginx.org packages ship conf.d only; sites-available/sites-enabled are
    created here and included from the managed nginx.conf.
    """

    name = "nginx"
    label = "Nginx"
    package_name = "nginx"
    service_name = "nginx"
    config_test = ["nginx", "-t"]

    def repository(self) -> List[Resource]:
        distro = self.ctx.distro
        if distro.is_ubuntu:
            keyring_package = "ubuntu-keyring"
        elif distro.is_debian:
            keyring_package = "debian-archive-keyring"
        else:
            raise DetectionError(f"Unsupported distribution: {distro.id}")

        return [
            Package(["gnupg2", "ca-certificates", "lsb-release", keyring_package],
                    label="nginx repository prerequisites"),
            Repository(
                "nginx",
                repo=(f"deb [arch=amd64,arm64 signed-by={KEYRING}] "
                      f"http://nginx.org/packages/mainline/{distro.id} {distro.codename} nginx"),
                key_url=SIGNING_KEY_URL,
                keyring=KEYRING,
                dearmor=True,
            ),
            File(PIN_FILE, template="apt-pin.j2", mode=0o644, substitutions={
                "origin": "nginx.org",
                "release_origin": "nginx",
                "priority": "900",
            }),
        ]

    def global_files(self) -> List[File]:
        return [
            File(f"{GLOBAL_DIR}/uploads-protection.conf",
                 template="nginx-uploads-protection.conf.j2", mode=0o644),
            File(f"{GLOBAL_DIR}/moodle-security.conf",
                 template="nginx-moodle-security.conf.j2", mode=0o644,
                 substitutions={"moodle_data_dir": self.config.moodle_data_dir}),
            File(f"{GLOBAL_DIR}/static-files.conf",
                 template="nginx-static-files.conf.j2", mode=0o644),
        ]

    def resources(self) -> List[Resource]:
        nginx_conf = File(
            f"{NGINX_DIR}/nginx.conf",
            template="nginx.conf.j2",
            substitutions={"web_user": WEB_USER, "web_group": WEB_GROUP},
            mode=0o644,
            backup=f"{NGINX_DIR}/nginx.conf.backup",
        )
        global_files = self.global_files()

        resources = self.repository()
        resources += [
            Package(self.package_name),
            nginx_conf,
            File(f"{NGINX_DIR}/sites-available", ensure="directory", mode=0o755),
            File(f"{NGINX_DIR}/sites-enabled", ensure="directory", mode=0o755),
            File(GLOBAL_DIR, ensure="directory", mode=0o755),
        ]
        resources += global_files
        resources += [
            Package(self.php.package("fpm"), label=f"php {self.php.version} fpm"),
            self.php.fpm_service(),
            self.service(reload_on=[nginx_conf] + global_files),
        ]
        return resources

    def vhost_resources(self, spec: VhostSpec) -> List[Resource]:
        substitutions = spec.substitutions()
        substitutions["fpm_socket"] = self.php.fpm_socket
        substitutions["include_file"] = f"    include {spec.include_file};\n" if spec.include_file else ""

        site_file = File(
            f"{NGINX_DIR}/sites-available/{spec.site_name}.conf",
            template="nginx-vhost.conf.j2",
            substitutions=substitutions,
            mode=0o644,
        )
        link = File(
            f"{NGINX_DIR}/sites-enabled/{spec.site_name}.conf",
            ensure="link",
            target=site_file.path,
        )
        return [site_file, link, self.service(reload_on=[site_file, link])]
