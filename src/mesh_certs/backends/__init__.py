"""PKI backend adapters."""
from __future__ import annotations

from mesh_certs.backends.base import IssuanceResult, PKIBackend
from mesh_certs.backends.local import LocalCABackend
from mesh_certs.backends.vault import VaultBackend

__all__ = ["IssuanceResult", "LocalCABackend", "PKIBackend", "VaultBackend"]
