"""Certificate value type.

A :class:`Certificate` represents one issuance: the identity it was issued
for, when it stops being valid, and the PEM material returned by the
authority. Values never change after construction; renewal always produces
a new instance with a new serial number.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509

if TYPE_CHECKING:
    from mesh_certs.backends.base import IssuanceResult

# Common name of the bootstrapped root certificate.
CA_COMMON_NAME = "Mesh Certificate Authority"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_serial(serial: int) -> str:
    """Render an integer serial as colon-separated hex, the way Vault does."""
    hex_serial = f"{serial:x}"
    if len(hex_serial) % 2:
        hex_serial = "0" + hex_serial
    return ":".join(hex_serial[i : i + 2] for i in range(0, len(hex_serial), 2))


def ca_serial_number(issuing_ca: bytes) -> str:
    """Return the serial of a PEM encoded CA certificate, or "" if unparseable."""
    try:
        ca_cert = x509.load_pem_x509_certificate(issuing_ca)
    except ValueError:
        return ""
    return format_serial(ca_cert.serial_number)


@dataclass(frozen=True, eq=False)
class Certificate:
    """An issued workload identity certificate.

    Parameters
    ----------
    common_name:
        The identity the certificate was issued for. Used as the cache key.
    expiration:
        Timezone-aware UTC instant after which the certificate is invalid.
    cert_chain:
        PEM-encoded certificate bytes.
    private_key:
        PEM-encoded private key bytes paired with ``cert_chain``.
    issuing_ca:
        PEM-encoded material of the authority that signed the certificate.
    serial_number:
        Identifier unique to this issuance.
    """

    common_name: str
    expiration: datetime.datetime
    cert_chain: bytes
    private_key: bytes
    issuing_ca: bytes
    serial_number: str

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def from_issuance(
        cls, result: "IssuanceResult", expiration: datetime.datetime
    ) -> "Certificate":
        """Build a certificate from a validated backend issuance result."""
        return cls(
            common_name=result.common_name,
            expiration=expiration,
            cert_chain=result.certificate,
            private_key=result.private_key,
            issuing_ca=result.issuing_ca,
            serial_number=result.serial_number,
        )

    @classmethod
    def root_from_probe(
        cls, probe: "Certificate", expiration: datetime.datetime
    ) -> "Certificate":
        """Build the root trust anchor from a probe certificate's issuing CA.

        The root carries no private key; both its chain and issuing CA are
        the probe's issuing-authority bytes.
        """
        return cls(
            common_name=CA_COMMON_NAME,
            expiration=expiration,
            cert_chain=probe.issuing_ca,
            private_key=b"",
            issuing_ca=probe.issuing_ca,
            serial_number=ca_serial_number(probe.issuing_ca),
        )

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Certificate):
            return NotImplemented
        return self.serial_number == other.serial_number

    def __hash__(self) -> int:
        return hash(self.serial_number)

    def __repr__(self) -> str:
        return (
            f"Certificate(common_name={self.common_name!r}, "
            f"serial_number={self.serial_number!r}, "
            f"expiration={self.expiration.isoformat()})"
        )

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        """Return True if *now* is at or past the expiration."""
        return (now or _utcnow()) >= self.expiration

    def time_remaining(self, now: datetime.datetime | None = None) -> datetime.timedelta:
        """Return the lifetime left (negative once expired)."""
        return self.expiration - (now or _utcnow())

    def load_x509(self) -> x509.Certificate:
        """Parse and return the X.509 certificate object."""
        return x509.load_pem_x509_certificate(self.cert_chain)
