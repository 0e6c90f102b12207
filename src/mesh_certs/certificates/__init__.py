"""Workload certificates: the value type, the cache and the manager."""
from __future__ import annotations

from mesh_certs.certificates.cache import CertCache, InMemoryCertCache
from mesh_certs.certificates.certificate import CA_COMMON_NAME, Certificate
from mesh_certs.certificates.inflight import SingleFlight
from mesh_certs.certificates.manager import CertManager

__all__ = [
    "CA_COMMON_NAME",
    "CertCache",
    "CertManager",
    "Certificate",
    "InMemoryCertCache",
    "SingleFlight",
]
