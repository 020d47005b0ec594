"""
Unit tests for certificate paths and certificate resources.
"""

import pytest

from laemp.config import CertMode
from laemp.core.errors import ConfigurationError, DependencyError
from laemp.resources import AcmeCertificate, SelfSignedCertificate, cert_paths, validate_certificates


class TestCertPaths:
    """The single certificate path function."""

    def test_self_signed(self):
        """Test self-signed locations."""
        paths = cert_paths(CertMode.SELF_SIGNED, "moodle.example.com")

        assert paths.cert == "/etc/ssl/moodle.example.com.cert"
        assert paths.key == "/etc/ssl/moodle.example.com.key"

    def test_acme(self):
        """Test ACME (certbot live directory) locations."""
        paths = cert_paths(CertMode.ACME, "moodle.example.com")

        assert paths.cert == "/etc/letsencrypt/live/moodle.example.com/fullchain.pem"
        assert paths.key == "/etc/letsencrypt/live/moodle.example.com/privkey.pem"

    def test_stable_across_calls(self):
        """Test that repeated calls agree."""
        assert cert_paths(CertMode.ACME, "a.example") == cert_paths(CertMode.ACME, "a.example")

    def test_no_mode(self):
        """Test that no certificate mode has no paths."""
        with pytest.raises(ConfigurationError):
            cert_paths(CertMode.NONE, "moodle.example.com")

    def test_resources_agree_with_paths(self):
        """Test that both certificate resources use cert_paths()."""
        assert SelfSignedCertificate("a.example").paths == cert_paths(CertMode.SELF_SIGNED, "a.example")
        acme = AcmeCertificate("a.example", email="x@a.example", directory="https://acme.test/dir")
        assert acme.paths == cert_paths(CertMode.ACME, "a.example")


class TestValidateCertificates:
    """Certificate presence checks before vhost rendering."""

    def test_present(self, transport, make_context):
        """Test that existing files validate."""
        transport.add_file("/etc/ssl/moodle.example.com.cert")
        transport.add_file("/etc/ssl/moodle.example.com.key", mode=0o600)
        ctx = make_context(transport, self_signed=True)

        paths = validate_certificates(ctx, "moodle.example.com")

        assert paths.key == "/etc/ssl/moodle.example.com.key"

    def test_missing_key(self, transport, make_context):
        """Test that a missing key is a dependency error naming it."""
        transport.add_file("/etc/ssl/moodle.example.com.cert")
        ctx = make_context(transport, self_signed=True)

        with pytest.raises(DependencyError, match="moodle.example.com.key"):
            validate_certificates(ctx, "moodle.example.com")

    def test_planned_in_dry_run(self, transport, make_context):
        """Test that a certificate planned earlier in a dry run counts as present."""
        ctx = make_context(transport, self_signed=True, dry_run=True)
        ctx.mark_planned("certificate")

        assert validate_certificates(ctx, "moodle.example.com").cert == "/etc/ssl/moodle.example.com.cert"


class TestCertificateResources:
    """openssl and certbot invocations."""

    def test_self_signed_generated(self, transport, make_context):
        """Test the openssl request and key permissions."""
        ctx = make_context(transport)

        SelfSignedCertificate("moodle.example.com").ensure(ctx)

        openssl = next(c for c in transport.commands if c[0] == "openssl")
        assert openssl[openssl.index("-out") + 1] == "/etc/ssl/moodle.example.com.cert"
        assert openssl[openssl.index("-keyout") + 1] == "/etc/ssl/moodle.example.com.key"
        assert "subjectAltName = DNS:moodle.example.com, DNS:www.moodle.example.com" in openssl
        assert transport.ran("chmod", "0600", "/etc/ssl/moodle.example.com.key")

    def test_self_signed_skipped_when_present(self, transport, make_context):
        """Test that an existing certificate is never regenerated."""
        transport.add_file("/etc/ssl/moodle.example.com.cert")
        ctx = make_context(transport)

        assert SelfSignedCertificate("moodle.example.com").ensure(ctx) is False
        assert not transport.ran("openssl")

    def test_self_signed_dry_run_intent(self, transport, make_context):
        """Test the dry-run phrase."""
        ctx = make_context(transport, dry_run=True)

        SelfSignedCertificate("moodle.example.com").ensure(ctx)

        assert ctx.intents == ["generate self-signed certificate for moodle.example.com"]
        assert not transport.ran("openssl")

    def test_acme_request(self, transport, make_context):
        """Test a non-interactive standalone certbot request."""
        ctx = make_context(transport)
        directory = "https://acme-staging-v02.api.letsencrypt.org/directory"

        AcmeCertificate("moodle.example.com", email="admin@moodle.example.com", directory=directory).ensure(ctx)

        certbot = next(c for c in transport.commands if c[0] == "certbot")
        assert certbot[:3] == ["certbot", "certonly", "--standalone"]
        assert "--non-interactive" in certbot
        assert certbot[certbot.index("--preferred-challenges") + 1] == "http"
        assert certbot[certbot.index("--server") + 1] == directory
