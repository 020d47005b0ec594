"""Built-in resources."""

from laemp.resources.certificate import (
    AcmeCertificate,
    CertificatePaths,
    SelfSignedCertificate,
    cert_paths,
    validate_certificates,
)
from laemp.resources.credential import Credential, generate_password
from laemp.resources.crontab import Crontab
from laemp.resources.database import MysqlDatabase, MysqlUser, PostgresDatabase, PostgresUser
from laemp.resources.exec import Exec
from laemp.resources.file import File, FileBlock, FileValue
from laemp.resources.pkg import Package
from laemp.resources.repository import Repository
from laemp.resources.service import Service
from laemp.resources.user import SystemUser

__all__ = [
    "AcmeCertificate",
    "CertificatePaths",
    "Credential",
    "Crontab",
    "Exec",
    "File",
    "FileBlock",
    "FileValue",
    "MysqlDatabase",
    "MysqlUser",
    "Package",
    "PostgresDatabase",
    "PostgresUser",
    "Repository",
    "SelfSignedCertificate",
    "Service",
    "SystemUser",
    "cert_paths",
    "generate_password",
    "validate_certificates",
]
