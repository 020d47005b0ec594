"""
Unit tests for literal template rendering.
"""

import pytest

from laemp.core.errors import TemplateError
from laemp.template import load_template, render, render_resource


class TestRender:
    """Placeholder substitution."""

    def test_literal_substitution(self):
        """Test that placeholders are replaced verbatim."""
        assert render("ServerName {{ site_name }}\n", {"site_name": "moodle.example.com"}) == \
            "ServerName moodle.example.com\n"

    def test_no_escaping(self):
        """Test that values with markup characters are left alone."""
        assert render("{{ value }}", {"value": "<Location \"/\">&"}) == "<Location \"/\">&"

    def test_deterministic(self):
        """Test that the same inputs always render the same text."""
        subs = {"a": "1", "b": "2"}
        assert render("{{ a }}-{{ b }}", subs) == render("{{ a }}-{{ b }}", subs)

    def test_missing_substitution(self):
        """Test that a missing placeholder value is an error naming it."""
        with pytest.raises(TemplateError, match="document_root"):
            render("{{ site_name }} {{ document_root }}", {"site_name": "x"})

    def test_control_flow_rejected(self):
        """Test that templates cannot carry their own logic."""
        with pytest.raises(TemplateError, match="control flow"):
            render("{% if fpm %}x{% endif %}", {"fpm": "1"})

    def test_expression_rejected(self):
        """Test that placeholders must be bare names."""
        with pytest.raises(TemplateError, match="non-literal"):
            render("{{ name | upper }}", {"name": "x"})

    def test_non_string_value(self):
        """Test that substitution values must be strings."""
        with pytest.raises(TemplateError, match="string"):
            render("{{ port }}", {"port": 8080})


class TestBundledTemplates:
    """Templates shipped with the package."""

    def test_unknown_template(self):
        """Test that an unknown template name is an error."""
        with pytest.raises(TemplateError, match="Unknown template"):
            load_template("nope.j2")

    def test_apache_vhost(self):
        """Test the Apache vhost with an FPM handler and an include."""
        text = render_resource("apache-vhost.conf.j2", {
            "site_name": "moodle.example.com",
            "admin_email": "admin@moodle.example.com",
            "document_root": "/var/www/html/moodle.example.com",
            "ssl_cert_file": "/etc/ssl/moodle.example.com.cert",
            "ssl_key_file": "/etc/ssl/moodle.example.com.key",
            "fpm_config": "    # fpm\n",
            "include_file": "    Include /etc/apache2/extra.conf\n",
        })

        assert "SSLCertificateFile /etc/ssl/moodle.example.com.cert" in text
        assert "ServerAdmin admin@moodle.example.com" in text
        assert text.endswith("    # fpm\n    Include /etc/apache2/extra.conf\n</VirtualHost>\n")

    def test_xsendfile_block(self):
        """Test the config.php X-Accel block."""
        text = render_resource("moodle-xsendfile.php.j2", {"moodle_data_dir": "/home/moodle/moodledata"})

        assert "'/home/moodle/moodledata/' => '/dataroot/'" in text
