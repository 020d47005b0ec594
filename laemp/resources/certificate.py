"""
Certificate resources - self-signed (openssl) and ACME (certbot).

Certificate locations come from cert_paths() only, so the vhost renderer
and the certificate resources can never disagree.
"""

from dataclasses import dataclass
from typing import Any, Dict

from laemp.config import CertMode
from laemp.core.errors import ConfigurationError, DependencyError
from laemp.core.resource import Plan, Resource
from laemp.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CertificatePaths:
    cert: str
    key: str


def cert_paths(mode: CertMode, domain: str) -> CertificatePaths:
    """
    Certificate and key locations for a domain.

    Raises:
        ConfigurationError: when no certificate mode is active
    """
    if mode is CertMode.ACME:
        return CertificatePaths(
            cert=f"/etc/letsencrypt/live/{domain}/fullchain.pem",
            key=f"/etc/letsencrypt/live/{domain}/privkey.pem",
        )
    elif mode is CertMode.SELF_SIGNED:
        return CertificatePaths(
            cert=f"/etc/ssl/{domain}.cert",
            key=f"/etc/ssl/{domain}.key",
        )
    raise ConfigurationError("No certificate mode selected; cannot determine certificate paths")


def validate_certificates(ctx, domain: str) -> CertificatePaths:
    """
    Paths of the certificate for domain, after checking both files exist.

    In a dry run a certificate that was planned earlier counts as present.

    Raises:
        DependencyError: if the certificate or key is missing
    """
    paths = cert_paths(ctx.config.cert_mode, domain)
    for label, path in (("Certificate", paths.cert), ("Key", paths.key)):
        if ctx.runner.file_exists(path):
            continue
        if ctx.was_planned("certificate"):
            logger.verbose(f"{label} file {path} would have been created earlier in this dry run")
            continue
        raise DependencyError(f"{label} file does not exist: {path}")

    logger.verbose(f"Certificate validation successful for domain: {domain}")
    logger.verbose(f"  Certificate: {paths.cert}")
    logger.verbose(f"  Key: {paths.key}")
    return paths


class SelfSignedCertificate(Resource):
    """
    Self-signed certificate generated with openssl.

    Skipped when the certificate file already exists.
    """

    def __init__(self, domain: str, days: int = 365, **options):
        super().__init__(domain, **options)
        self.domain = domain
        self.days = days
        self.paths = cert_paths(CertMode.SELF_SIGNED, domain)

    def resource_type(self) -> str:
        return "cert"

    def check(self, ctx) -> Dict[str, Any]:
        return {"exists": ctx.runner.file_exists(self.paths.cert)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        logger.info(f"Creating self-signed certificate for {self.domain}")
        ctx.runner.run(
            [
                "openssl", "req", "-x509", "-nodes",
                "-days", str(self.days),
                "-newkey", "rsa:2048",
                "-out", self.paths.cert,
                "-keyout", self.paths.key,
                "-subj", f"/CN={self.domain}",
                "-addext", f"subjectAltName = DNS:{self.domain}, DNS:www.{self.domain}",
                "-addext", "keyUsage = digitalSignature",
                "-addext", "extendedKeyUsage = serverAuth",
            ],
            mutating=True,
        )
        ctx.runner.chmod(self.paths.key, 0o600)

    def describe(self, plan: Plan) -> str:
        return f"generate self-signed certificate for {self.domain}"


class AcmeCertificate(Resource):
    """
    Certificate obtained from an ACME directory with certbot.

    certbot runs in standalone mode over the HTTP challenge, since the
    certificate stage runs before any web server is configured.
    """

    def __init__(self, domain: str, email: str, directory: str, **options):
        super().__init__(domain, **options)
        self.domain = domain
        self.email = email
        self.directory = directory
        self.paths = cert_paths(CertMode.ACME, domain)

    def resource_type(self) -> str:
        return "cert"

    def check(self, ctx) -> Dict[str, Any]:
        return {"exists": ctx.runner.file_exists(self.paths.cert)}

    def desired_state(self) -> Dict[str, Any]:
        return {"exists": True}

    def apply(self, plan: Plan, ctx) -> None:
        logger.info(f"Requesting ACME certificate for {self.domain} from {self.directory}")
        ctx.runner.run(
            [
                "certbot", "certonly", "--standalone",
                "-d", self.domain,
                "-m", self.email,
                "--agree-tos",
                "--non-interactive",
                "--preferred-challenges", "http",
                "--server", self.directory,
            ],
            mutating=True,
        )

    def describe(self, plan: Plan) -> str:
        return f"request ACME certificate for {self.domain}"
