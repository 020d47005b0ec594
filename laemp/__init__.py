"""
laemp - provision a LAMP/LEMP stack and deploy Moodle.

Idempotent Verify/Ensure components for PHP, Apache or Nginx, MariaDB or
PostgreSQL, certificates, Memcached, Moodle and Prometheus monitoring.
"""

__version__ = "0.1.0"
