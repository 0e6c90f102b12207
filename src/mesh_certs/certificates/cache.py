"""Certificate cache: abstract interface and in-memory implementation.

The cache holds the single current :class:`Certificate` per common name.
It never evicts on a timer; expiry is checked by readers and handled by
the rotor.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from mesh_certs.certificates.certificate import Certificate


class CertCache(ABC):
    """Abstract base class for certificate caches."""

    @abstractmethod
    def get(self, common_name: str) -> Certificate | None:
        """Return the cached certificate for *common_name*, or None."""

    @abstractmethod
    def put(self, cert: Certificate) -> None:
        """Store *cert* under its common name, replacing any previous entry."""

    @abstractmethod
    def replace(self, cert: Certificate, expected_serial: str) -> bool:
        """Store *cert* only if the current entry has *expected_serial*.

        Returns
        -------
        bool
            True if *cert* was stored, False if the entry is missing or has
            already been replaced.
        """

    @abstractmethod
    def delete(self, common_name: str) -> bool:
        """Remove the entry for *common_name*.

        Returns
        -------
        bool
            True if an entry was removed, False if none existed.
        """

    @abstractmethod
    def snapshot(self) -> list[Certificate]:
        """Return a point-in-time list of every cached certificate."""


class InMemoryCertCache(CertCache):
    """Dictionary-backed cache guarded by a single lock.

    Safe for concurrent use from any number of threads.
    """

    def __init__(self) -> None:
        self._certs: dict[str, Certificate] = {}
        self._lock = threading.Lock()

    def get(self, common_name: str) -> Certificate | None:
        with self._lock:
            return self._certs.get(common_name)

    def put(self, cert: Certificate) -> None:
        with self._lock:
            self._certs[cert.common_name] = cert

    def replace(self, cert: Certificate, expected_serial: str) -> bool:
        with self._lock:
            current = self._certs.get(cert.common_name)
            if current is None or current.serial_number != expected_serial:
                return False
            self._certs[cert.common_name] = cert
            return True

    def delete(self, common_name: str) -> bool:
        with self._lock:
            return self._certs.pop(common_name, None) is not None

    def snapshot(self) -> list[Certificate]:
        with self._lock:
            return list(self._certs.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._certs)

    def __contains__(self, common_name: object) -> bool:
        with self._lock:
            return common_name in self._certs
