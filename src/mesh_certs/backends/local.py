"""In-process Certificate Authority backend.

Generates a self-signed CA with :mod:`cryptography` and signs workload
certificates locally. Intended for development, demos and tests; production
deployments use :class:`~mesh_certs.backends.vault.VaultBackend`.
"""
from __future__ import annotations

import datetime
import logging
import threading

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from mesh_certs.backends.base import IssuanceResult, PKIBackend
from mesh_certs.certificates.certificate import format_serial
from mesh_certs.errors import IssuanceError

logger = logging.getLogger(__name__)


class LocalCABackend(PKIBackend):
    """Self-signed CA that issues short-lived workload certificates.

    Parameters
    ----------
    common_name:
        Subject common name of the CA certificate.
    organization:
        Subject organization of the CA and issued certificates.
    key_size:
        RSA key size for the CA and for every issued key. Must be at
        least 2048.
    ca_validity:
        Lifetime of the CA certificate.
    """

    def __init__(
        self,
        common_name: str = "mesh-certs local CA",
        organization: str = "mesh-certs",
        key_size: int = 2048,
        ca_validity: datetime.timedelta = datetime.timedelta(days=3650),
    ) -> None:
        if key_size < 2048:
            raise ValueError(f"key_size must be at least 2048 bits, got {key_size}")
        self._organization = organization
        self._key_size = key_size
        self._lock = threading.Lock()
        self._issued = 0

        self._ca_key: RSAPrivateKey = rsa.generate_private_key(
            public_exponent=65537,
            key_size=key_size,
        )
        now = datetime.datetime.now(datetime.timezone.utc)
        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            ]
        )
        self._ca_cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(self._ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + ca_validity)
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .sign(self._ca_key, hashes.SHA256())
        )
        self._ca_pem = self._ca_cert.public_bytes(serialization.Encoding.PEM)

    # ------------------------------------------------------------------
    # PKIBackend interface
    # ------------------------------------------------------------------

    def issue(self, common_name: str, validity: datetime.timedelta) -> IssuanceResult:
        """Sign a new certificate and key for *common_name*."""
        if validity <= datetime.timedelta(0):
            raise IssuanceError(common_name, "validity must be positive")

        key = rsa.generate_private_key(public_exponent=65537, key_size=self._key_size)
        now = datetime.datetime.now(datetime.timezone.utc)
        subject = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, self._organization),
            ]
        )
        try:
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(self._ca_cert.subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + validity)
                .add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(common_name)]),
                    critical=False,
                )
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage(
                        [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                    ),
                    critical=False,
                )
                .sign(self._ca_key, hashes.SHA256())
            )
        except ValueError as exc:
            raise IssuanceError(common_name, str(exc)) from exc

        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        with self._lock:
            self._issued += 1

        logger.debug("Local CA signed CN=%s serial=%x", common_name, cert.serial_number)
        return IssuanceResult.from_response(
            common_name,
            validity,
            {
                "serial_number": format_serial(cert.serial_number),
                "certificate": cert.public_bytes(serialization.Encoding.PEM),
                "private_key": key_pem,
                "issuing_ca": self._ca_pem,
            },
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    @property
    def ca_cert(self) -> x509.Certificate:
        return self._ca_cert

    def ca_cert_pem(self) -> bytes:
        """Return PEM-encoded CA certificate bytes."""
        return self._ca_pem

    @property
    def issued_count(self) -> int:
        """Number of certificates signed so far."""
        with self._lock:
            return self._issued
