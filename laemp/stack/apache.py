"""
Apache - apache2 from the vendor repository, with mod_php or PHP-FPM.
"""

from typing import List

from laemp.core.resource import Resource
from laemp.logging import get_logger
from laemp.resources import Exec, File, Package
from laemp.stack.base import vendor_repository
from laemp.stack.web import VhostSpec, WebServer
from laemp.template import render_resource

logger = get_logger(__name__)

APACHE_DIR = "/etc/apache2"
MODULES = ["ssl", "headers", "rewrite", "deflate", "expires"]
FPM_MODULES = ["proxy_fcgi", "setenvif"]


class Apache(WebServer):
    """
    Apache web server.

    Example:
        apache = Apache(ctx)
        apache.ensure()
        apache.create_vhost(VhostSpec.for_site(ctx))
    """

    name = "apache"
    label = "Apache"
    package_name = "apache2"
    service_name = "apache2"
    config_test = ["apache2ctl", "configtest"]

    def module(self, name: str) -> Exec:
        return Exec(
            f"a2enmod-{name}",
            command=["a2enmod", name],
            creates=f"{APACHE_DIR}/mods-enabled/{name}.load",
            description=f"enable Apache module {name}",
        )

    def conf(self, name: str) -> Exec:
        return Exec(
            f"a2enconf-{name}",
            command=["a2enconf", name],
            creates=f"{APACHE_DIR}/conf-enabled/{name}.conf",
            description=f"enable Apache configuration {name}",
        )

    def resources(self) -> List[Resource]:
        resources: List[Resource] = [
            vendor_repository(self.ctx, "apache2"),
            Package(self.package_name),
        ]
        toggles = [self.module(name) for name in MODULES]

        if self.config.fpm:
            resources.append(Package([self.php.package("fpm"), "libapache2-mod-fcgid"],
                                     label=f"php {self.php.version} fpm"))
            toggles += [self.module(name) for name in FPM_MODULES]
            toggles.append(self.conf(self.php.fpm_service_name))
            resources += toggles
            resources.append(self.php.fpm_service())
        else:
            mod_php = Package(f"libapache2-mod-php{self.php.version}")
            resources.append(mod_php)
            resources += toggles
            toggles.append(mod_php)

        resources.append(self.service(restart_on=toggles))
        return resources

    def vhost_resources(self, spec: VhostSpec) -> List[Resource]:
        substitutions = spec.substitutions()
        substitutions["fpm_config"] = ""
        if self.config.fpm:
            substitutions["fpm_config"] = render_resource(
                "apache-fpm-handler.conf.j2", {"fpm_socket": self.php.fpm_socket}
            )
        substitutions["include_file"] = f"    Include {spec.include_file}\n" if spec.include_file else ""

        site_file = File(
            f"{APACHE_DIR}/sites-available/{spec.site_name}.conf",
            template="apache-vhost.conf.j2",
            substitutions=substitutions,
            mode=0o644,
        )
        enable = Exec(
            f"a2ensite-{spec.site_name}",
            command=["a2ensite", spec.site_name],
            creates=f"{APACHE_DIR}/sites-enabled/{spec.site_name}.conf",
            description=f"enable site {spec.site_name}",
        )
        return [site_file, enable, self.service(reload_on=[site_file, enable])]
