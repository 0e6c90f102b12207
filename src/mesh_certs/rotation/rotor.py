"""Rotor: background rotation of certificates nearing expiry.

The rotor wakes up on a fixed interval, asks the manager for every cached
certificate, and rotates the ones that have expired or will expire within
the renewal margin. A failed rotation is logged and retried on the next
tick; it never stops the scan of the remaining certificates.
"""
from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from mesh_certs.certificates.certificate import Certificate
from mesh_certs.errors import IssuanceError, ManagerClosedError, NotFoundError

if TYPE_CHECKING:
    from mesh_certs.certificates.manager import CertManager

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = datetime.timedelta(seconds=5)
DEFAULT_RENEW_BEFORE = datetime.timedelta(seconds=30)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def should_rotate(
    cert: Certificate,
    renew_before: datetime.timedelta = DEFAULT_RENEW_BEFORE,
    now: datetime.datetime | None = None,
) -> bool:
    """Return True if *cert* is expired or expires within *renew_before*."""
    return cert.time_remaining(now or _utcnow()) <= renew_before


class RotationStatus(str, Enum):
    """Outcome of one rotation attempt."""

    ROTATED = "rotated"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RotationResult:
    """Result of rotating one certificate during a tick.

    Parameters
    ----------
    common_name:
        The identity that was rotated.
    status:
        Whether the rotation succeeded, failed, or was skipped because the
        certificate was released or replaced while it was being rotated.
    old_serial:
        Serial of the certificate that triggered rotation.
    new_serial:
        Serial of the replacement, or None on failure.
    error:
        Error message on failure.
    """

    common_name: str
    status: RotationStatus
    old_serial: str
    new_serial: str | None = None
    error: str = ""


class Rotor:
    """Periodically rotates a manager's certificates before they expire.

    Parameters
    ----------
    manager:
        The certificate manager whose cache is scanned and whose
        ``rotate_certificate`` is called.
    interval:
        Time between ticks.
    renew_before:
        Renewal margin: rotate when this much lifetime or less remains.
    clock:
        Returns the current UTC time. Defaults to the system clock.
    logger:
        Logger to report through. Defaults to this module's logger.
    """

    def __init__(
        self,
        manager: "CertManager",
        interval: datetime.timedelta = DEFAULT_INTERVAL,
        renew_before: datetime.timedelta = DEFAULT_RENEW_BEFORE,
        clock: Callable[[], datetime.datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if interval <= datetime.timedelta(0):
            raise ValueError(f"interval must be positive, got {interval}")
        self._manager = manager
        self._interval = interval
        self._renew_before = renew_before
        self._clock = clock or _utcnow
        self._log = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def renew_before(self) -> datetime.timedelta:
        return self._renew_before

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking on a daemon thread.

        Raises
        ------
        RuntimeError
            If the rotor is already running or has been stopped.
        """
        with self._lock:
            if self._stop.is_set():
                raise RuntimeError("rotor has been stopped and cannot be restarted")
            if self._thread is not None:
                raise RuntimeError("rotor is already running")
            self._thread = threading.Thread(
                target=self._run, name="mesh-certs-rotor", daemon=True
            )
            self._thread.start()
        self._log.info(
            "Started certificate rotor, interval=%s renew_before=%s",
            self._interval,
            self._renew_before,
        )

    def stop(self, timeout: float | None = None) -> None:
        """Request the loop to exit and wait for the thread to finish."""
        self._stop.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                self._log.warning("Certificate rotor did not stop within %ss", timeout)

    def _run(self) -> None:
        interval = self._interval.total_seconds()
        while not self._stop.wait(interval):
            try:
                self.tick()
            except Exception:
                self._log.exception("Unexpected error during certificate rotation tick")
        self._log.info("Certificate rotor stopped")

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def tick(self) -> list[RotationResult]:
        """Rotate every cached certificate that is due.

        Returns
        -------
        list[RotationResult]
            One entry per certificate that was due, in scan order.
        """
        now = self._clock()
        results: list[RotationResult] = []
        for cert in self._manager.list_certificates():
            if self._stop.is_set():
                break
            if not should_rotate(cert, self._renew_before, now):
                continue

            self._log.info(
                "Certificate CN=%s serial=%s expires at %s, rotating",
                cert.common_name,
                cert.serial_number,
                cert.expiration.isoformat(),
            )
            try:
                new_cert = self._manager.rotate_certificate(
                    cert.common_name, expected_serial=cert.serial_number
                )
            except ManagerClosedError:
                break
            except NotFoundError:
                self._log.info(
                    "Skipping rotation of CN=%s: released or replaced since the scan",
                    cert.common_name,
                )
                results.append(
                    RotationResult(
                        common_name=cert.common_name,
                        status=RotationStatus.SKIPPED,
                        old_serial=cert.serial_number,
                    )
                )
                continue
            except IssuanceError as exc:
                self._log.error("Failed to rotate certificate CN=%s: %s", cert.common_name, exc)
                results.append(
                    RotationResult(
                        common_name=cert.common_name,
                        status=RotationStatus.FAILED,
                        old_serial=cert.serial_number,
                        error=str(exc),
                    )
                )
                continue

            results.append(
                RotationResult(
                    common_name=cert.common_name,
                    status=RotationStatus.ROTATED,
                    old_serial=cert.serial_number,
                    new_serial=new_cert.serial_number,
                )
            )
        return results
