"""
Certificate stage - runs first, before any web server exists.
"""

from typing import List

from laemp.config import CertMode
from laemp.core.errors import ConfigurationError
from laemp.core.resource import Resource, State
from laemp.resources import AcmeCertificate, Package, SelfSignedCertificate, cert_paths
from laemp.stack.base import Component


class Certificates(Component):
    """
    Certificate for the site, self-signed or from an ACME directory.

    The component name doubles as the dry-run planning key that
    validate_certificates() consults.
    """

    name = "certificate"
    label = "SSL certificate"

    def probe(self) -> State:
        paths = cert_paths(self.config.cert_mode, self.config.site_name)
        runner = self.ctx.runner
        if runner.file_exists(paths.cert) and runner.file_exists(paths.key):
            return State.PRESENT
        return State.ABSENT

    def resources(self) -> List[Resource]:
        config = self.config
        if config.cert_mode is CertMode.SELF_SIGNED:
            return [
                Package("openssl"),
                SelfSignedCertificate(config.site_name),
            ]
        elif config.cert_mode is CertMode.ACME:
            return [
                Package("certbot", no_install_recommends=True),
                AcmeCertificate(config.site_name, email=config.effective_acme_email,
                                directory=config.acme_directory),
            ]
        raise ConfigurationError("No certificate mode selected (-S or -a)")
