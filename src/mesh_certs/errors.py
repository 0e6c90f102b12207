"""Exception hierarchy for mesh-certs.

Every error raised by the manager, the rotor and the backend adapters
derives from :class:`CertManagerError`.
"""
from __future__ import annotations


class CertManagerError(Exception):
    """Base class for all mesh-certs errors."""


class BackendUnavailableError(CertManagerError):
    """Raised when a session with the PKI backend cannot be established."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"PKI backend at {address!r} is unavailable: {reason}")


class IssuanceError(CertManagerError):
    """Raised when issuing a certificate for a common name fails."""

    def __init__(self, common_name: str, reason: str) -> None:
        self.common_name = common_name
        self.reason = reason
        super().__init__(f"Failed to issue certificate for CN={common_name}: {reason}")


class MalformedResponseError(IssuanceError):
    """Raised when the backend returns a result missing a required field."""


class NotFoundError(CertManagerError, KeyError):
    """Raised when no live certificate is cached for a common name."""

    def __init__(self, common_name: str) -> None:
        self.common_name = common_name
        super().__init__(f"No valid certificate cached for CN={common_name}")

    def __str__(self) -> str:
        return str(self.args[0])


class ManagerClosedError(CertManagerError):
    """Raised when an issuing operation is attempted after close()."""


class ChannelClosedError(CertManagerError):
    """Raised when reading from a closed and drained announcement stream."""
