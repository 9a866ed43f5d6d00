"""
Self-signed TLS certificate issuing for advanced mode.

The key pair is written world-readable (0644): the nginx container must be
able to read it whatever user the files belong to.
"""

import datetime
import ipaddress
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .config import CertificateParams, StackPaths
from .exceptions import GenerationError

logger = logging.getLogger(__name__)

CERT_VALIDITY_DAYS = 365
KEY_SIZE = 2048
CERT_FILE_MODE = 0o644

_SUBJECT_FIELDS = (
    (NameOID.COUNTRY_NAME, "country"),
    (NameOID.STATE_OR_PROVINCE_NAME, "state"),
    (NameOID.LOCALITY_NAME, "city"),
    (NameOID.ORGANIZATION_NAME, "org"),
    (NameOID.ORGANIZATIONAL_UNIT_NAME, "org_unit"),
    (NameOID.COMMON_NAME, "common_name"),
)


def build_subject(params: CertificateParams) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(oid, getattr(params, attr))
        for oid, attr in _SUBJECT_FIELDS
    ])


def _subject_alt_name(common_name: str) -> x509.SubjectAlternativeName:
    try:
        entry = x509.IPAddress(ipaddress.ip_address(common_name))
    except ValueError:
        entry = x509.DNSName(common_name)
    return x509.SubjectAlternativeName([entry])


class CertificateIssuer:
    """Creates and inspects the nginx certificate pair of an installation."""

    def __init__(self, paths: StackPaths):
        self.paths = paths

    def has_material(self) -> bool:
        return self.paths.certificate.is_file() and self.paths.private_key.is_file()

    def load_certificate(self) -> Optional[x509.Certificate]:
        try:
            return x509.load_pem_x509_certificate(self.paths.certificate.read_bytes())
        except (OSError, ValueError) as e:
            logger.debug(f"Cannot load {self.paths.certificate}: {e}")
            return None

    def matches(self, params: CertificateParams) -> bool:
        """True if the existing certificate was issued for exactly these params."""
        if not self.has_material():
            return False
        cert = self.load_certificate()
        if cert is None:
            return False
        return cert.subject == build_subject(params)

    def issue(self, params: CertificateParams) -> x509.Certificate:
        """Generate a new self-signed key pair and replace the current one."""
        if not params.common_name:
            raise GenerationError("Certificate common name (domain) is not set")

        logger.info(f"Generating self-signed SSL certificate for CN={params.common_name}")
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
            subject = build_subject(params)
            now = datetime.datetime.now(datetime.timezone.utc)
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + datetime.timedelta(days=CERT_VALIDITY_DAYS))
                .add_extension(_subject_alt_name(params.common_name), critical=False)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .sign(key, hashes.SHA256())
            )
        except ValueError as e:
            raise GenerationError(f"Failed to build certificate: {e}")

        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        cert_pem = cert.public_bytes(serialization.Encoding.PEM)

        self._write_pair(key_pem, cert_pem)
        logger.info(f"  Key:  {self.paths.private_key}")
        logger.info(f"  Cert: {self.paths.certificate}")
        return cert

    def _write_pair(self, key_pem: bytes, cert_pem: bytes):
        staged = []
        try:
            self.paths.ssl_dir.mkdir(parents=True, exist_ok=True)
            for target, data in ((self.paths.private_key, key_pem),
                                 (self.paths.certificate, cert_pem)):
                tmp = target.with_name(f".{target.name}.tmp")
                tmp.write_bytes(data)
                os.chmod(tmp, CERT_FILE_MODE)
                staged.append((tmp, target))
            for tmp, target in staged:
                os.replace(tmp, target)
        except OSError as e:
            raise GenerationError(f"Failed to write certificate files: {e}")
        finally:
            for tmp, _ in staged:
                Path(tmp).unlink(missing_ok=True)
