"""CertManager: issuance, caching and rotation of workload certificates.

The manager is the single source of truth for which certificate is current
for each common name. It bootstraps the mesh root from a probe issuance,
answers lookups from its cache, issues through a :class:`PKIBackend` on a
miss, and publishes an announcement whenever a certificate is rotated.
"""
from __future__ import annotations

import datetime
import logging
import threading
import time
from typing import Any, Callable

from mesh_certs.announcements.channel import (
    Announcement,
    AnnouncementChannel,
    AnnouncementStream,
    AnnouncementType,
)
from mesh_certs.backends.base import PKIBackend
from mesh_certs.certificates.cache import CertCache, InMemoryCertCache
from mesh_certs.certificates.certificate import Certificate
from mesh_certs.certificates.inflight import SingleFlight
from mesh_certs.config import ManagerSettings
from mesh_certs.errors import IssuanceError, ManagerClosedError, NotFoundError
from mesh_certs.rotation.rotor import Rotor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CertManager:
    """Issues, caches and rotates certificates for mesh workloads.

    Thread-safe. Construction issues a probe certificate to learn the
    authority's CA, builds the root certificate from it and starts the
    rotor.

    Parameters
    ----------
    backend:
        The authority that signs certificates.
    settings:
        Validity periods, rotor policy and announcement buffering.
    cache:
        Certificate cache. Defaults to a fresh :class:`InMemoryCertCache`.
    clock:
        Returns the current UTC time. Defaults to the system clock.
    logger:
        Logger to report through. Defaults to this module's logger.
    start_rotor:
        Start background rotation immediately. Tests that drive
        :meth:`Rotor.tick` by hand pass False.

    Raises
    ------
    IssuanceError
        If the probe issuance fails.

    Example
    -------
    ::

        with CertManager(LocalCABackend()) as manager:
            cert = manager.issue_certificate("bookstore.mesh", timedelta(hours=1))
            root = manager.get_root_certificate()
    """

    def __init__(
        self,
        backend: PKIBackend,
        settings: ManagerSettings | None = None,
        *,
        cache: CertCache | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
        logger: logging.Logger | None = None,
        start_rotor: bool = True,
    ) -> None:
        self._backend = backend
        self._settings = settings or ManagerSettings()
        self._cache = cache if cache is not None else InMemoryCertCache()
        self._clock = clock or _utcnow
        self._log = logger or logging.getLogger(__name__)
        self._inflight: SingleFlight[Certificate] = SingleFlight()
        self._closed = threading.Event()

        self._channel = AnnouncementChannel(
            maxsize=self._settings.announcement_buffer,
            overflow=self._settings.announcement_overflow,
        )
        self._announcements = self._channel.subscribe()

        # Issue a throwaway certificate to learn the issuing CA.
        try:
            probe = self._issue(
                self._settings.probe_common_name, self._settings.probe_validity
            )
        except Exception:
            self._channel.close()
            self._backend.close()
            raise
        self._root = Certificate.root_from_probe(
            probe, expiration=self._clock() + self._settings.root_validity
        )

        self._rotor = Rotor(
            self,
            interval=self._settings.check_interval,
            renew_before=self._settings.renew_before_expiry,
            clock=self._clock,
            logger=self._log,
        )
        if start_rotor:
            self._rotor.start()

    @classmethod
    def from_vault(
        cls,
        address: str,
        token: str,
        role: str,
        settings: ManagerSettings | None = None,
        *,
        mount_point: str = "pki",
        verify: bool | str = True,
        timeout: int = 30,
        **kwargs: Any,
    ) -> "CertManager":
        """Create a manager backed by a HashiCorp Vault PKI role.

        *mount_point*, *verify* and *timeout* are passed to
        :class:`~mesh_certs.backends.vault.VaultBackend`; remaining keyword
        arguments go to the constructor.

        Raises
        ------
        BackendUnavailableError
            If Vault cannot be reached or rejects the token.
        IssuanceError
            If the probe issuance fails.
        """
        from mesh_certs.backends.vault import VaultBackend

        backend = VaultBackend(
            address, token, role, mount_point=mount_point, verify=verify, timeout=timeout
        )
        return cls(backend, settings, **kwargs)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed.is_set():
            raise ManagerClosedError("certificate manager is closed")

    def _issue(self, common_name: str, validity: datetime.timedelta) -> Certificate:
        if validity <= datetime.timedelta(0):
            raise ValueError(f"validity must be positive, got {validity}")

        issued_at = self._clock()
        try:
            result = self._backend.issue(common_name, validity)
        except IssuanceError:
            self._log.error("Error issuing new certificate for CN=%s", common_name)
            raise
        except Exception as exc:
            self._log.error("Error issuing new certificate for CN=%s: %s", common_name, exc)
            raise IssuanceError(common_name, str(exc)) from exc

        if result.common_name != common_name:
            raise IssuanceError(
                common_name, f"backend issued for unexpected CN={result.common_name}"
            )
        return Certificate.from_issuance(result, expiration=issued_at + validity)

    def _get_from_cache(self, common_name: str) -> Certificate | None:
        cert = self._cache.get(common_name)
        if cert is None:
            return None
        if cert.is_expired(self._clock()):
            self._log.debug("Certificate found in cache but has expired CN=%s", common_name)
            return None
        self._log.debug("Certificate found in cache CN=%s", common_name)
        return cert

    def _issue_and_store(self, common_name: str, validity: datetime.timedelta) -> Certificate:
        # A previous leader may have stored while this caller waited to lead.
        cert = self._get_from_cache(common_name)
        if cert is not None:
            return cert
        cert = self._issue(common_name, validity)
        self._cache.put(cert)
        return cert

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def issue_certificate(
        self, common_name: str, validity: datetime.timedelta
    ) -> Certificate:
        """Return the cached certificate for *common_name*, issuing on a miss.

        Concurrent callers that miss on the same name share one backend
        call and receive the same certificate.

        Parameters
        ----------
        common_name:
            Workload identity.
        validity:
            Lifetime requested for a newly issued certificate. Ignored on a
            cache hit.

        Raises
        ------
        IssuanceError
            If the backend fails; the cache is left without an entry.
        ManagerClosedError
            If the manager has been closed.
        """
        self._ensure_open()
        cert = self._get_from_cache(common_name)
        if cert is not None:
            return cert

        self._log.info("Issuing new certificate for CN=%s", common_name)
        start = time.monotonic()
        cert = self._inflight.do(
            common_name, lambda: self._issue_and_store(common_name, validity)
        )
        self._log.info(
            "Issuing new certificate for CN=%s took %.3fs",
            common_name,
            time.monotonic() - start,
        )
        return cert

    def rotate_certificate(
        self, common_name: str, expected_serial: str | None = None
    ) -> Certificate:
        """Issue a fresh certificate for *common_name* and announce it.

        Uses the configured service certificate validity regardless of any
        cached value.

        Parameters
        ----------
        common_name:
            Workload identity.
        expected_serial:
            If given, the new certificate is stored only while the cached
            entry still carries this serial. A name released or rotated by
            someone else in the meantime is left alone.

        Raises
        ------
        IssuanceError
            If the backend fails; the previous cache entry is untouched.
        NotFoundError
            If *expected_serial* is given and no longer matches the cache.
        ManagerClosedError
            If the manager has been closed.
        """
        self._ensure_open()
        previous = self._cache.get(common_name)
        if expected_serial is not None and (
            previous is None or previous.serial_number != expected_serial
        ):
            raise NotFoundError(common_name)

        self._log.info("Rotating certificate for CN=%s", common_name)
        start = time.monotonic()
        cert = self._issue(common_name, self._settings.service_cert_validity)
        if expected_serial is None:
            self._cache.put(cert)
        elif not self._cache.replace(cert, expected_serial):
            self._log.info(
                "Certificate CN=%s changed during rotation, discarding serial=%s",
                common_name,
                cert.serial_number,
            )
            raise NotFoundError(common_name)
        self._channel.publish(
            Announcement(
                type=AnnouncementType.CERTIFICATE_ROTATED,
                common_name=common_name,
                new_serial=cert.serial_number,
                old_serial=previous.serial_number if previous is not None else None,
                timestamp=self._clock(),
            )
        )

        self._log.info(
            "Rotating certificate CN=%s took %.3fs", common_name, time.monotonic() - start
        )
        return cert

    def release_certificate(self, common_name: str) -> None:
        """Drop the cached certificate for *common_name*, if any."""
        if self._cache.delete(common_name):
            self._log.info("Released certificate for CN=%s", common_name)

    def get_certificate(self, common_name: str) -> Certificate:
        """Return the live cached certificate for *common_name*.

        Raises
        ------
        NotFoundError
            If nothing is cached for the name or the cached certificate has
            expired.
        """
        cert = self._get_from_cache(common_name)
        if cert is None:
            raise NotFoundError(common_name)
        return cert

    def list_certificates(self) -> list[Certificate]:
        """Return every cached certificate, in no particular order."""
        return self._cache.snapshot()

    def get_root_certificate(self) -> Certificate:
        """Return the root certificate bootstrapped at construction."""
        return self._root

    def get_announcements_channel(self) -> AnnouncementStream:
        """Return the shared stream of rotation announcements."""
        return self._announcements

    def subscribe(self, maxsize: int | None = None) -> AnnouncementStream:
        """Return a new, independent stream of rotation announcements."""
        return self._channel.subscribe(maxsize)

    @property
    def settings(self) -> ManagerSettings:
        return self._settings

    @property
    def rotor(self) -> Rotor:
        return self._rotor

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self, timeout: float | None = None) -> None:
        """Stop the rotor, wait for it to exit and close announcement streams.

        Safe to call more than once.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        self._rotor.stop(timeout)
        self._channel.close()
        self._backend.close()
        self._log.info("Certificate manager closed")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __enter__(self) -> "CertManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
