"""mesh-certs: issuance, caching and rotation of service mesh identity certificates.

Public API
----------
Everything exported from this module is the stable surface.

Quick start
-----------
::

    from datetime import timedelta

    from mesh_certs import CertManager, LocalCABackend

    with CertManager(LocalCABackend()) as manager:
        cert = manager.issue_certificate("bookstore.mesh", timedelta(hours=1))
        for announcement in manager.get_announcements_channel():
            ...
"""
from __future__ import annotations

__version__: str = "0.1.0"

from mesh_certs.announcements import (
    Announcement,
    AnnouncementChannel,
    AnnouncementStream,
    AnnouncementType,
    OverflowPolicy,
)
from mesh_certs.backends import IssuanceResult, LocalCABackend, PKIBackend, VaultBackend
from mesh_certs.certificates import (
    CA_COMMON_NAME,
    CertCache,
    CertManager,
    Certificate,
    InMemoryCertCache,
)
from mesh_certs.config import ManagerSettings
from mesh_certs.errors import (
    BackendUnavailableError,
    CertManagerError,
    ChannelClosedError,
    IssuanceError,
    MalformedResponseError,
    ManagerClosedError,
    NotFoundError,
)
from mesh_certs.rotation import RotationResult, RotationStatus, Rotor, should_rotate

__all__ = [
    "Announcement",
    "AnnouncementChannel",
    "AnnouncementStream",
    "AnnouncementType",
    "BackendUnavailableError",
    "CA_COMMON_NAME",
    "CertCache",
    "CertManager",
    "CertManagerError",
    "Certificate",
    "ChannelClosedError",
    "InMemoryCertCache",
    "IssuanceError",
    "IssuanceResult",
    "LocalCABackend",
    "MalformedResponseError",
    "ManagerClosedError",
    "ManagerSettings",
    "NotFoundError",
    "OverflowPolicy",
    "PKIBackend",
    "RotationResult",
    "RotationStatus",
    "Rotor",
    "VaultBackend",
    "__version__",
    "should_rotate",
]
