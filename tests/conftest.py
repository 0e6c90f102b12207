"""Shared fixtures: an in-memory fake authority and a controllable clock."""
from __future__ import annotations

import datetime
import itertools
import threading
import time
from typing import Callable, Iterator

import pytest

from mesh_certs.backends.base import IssuanceResult, PKIBackend
from mesh_certs.certificates.manager import CertManager
from mesh_certs.config import ManagerSettings
from mesh_certs.errors import IssuanceError

FAKE_CA_PEM = b"-----BEGIN CERTIFICATE-----\nZmFrZS1jYQ==\n-----END CERTIFICATE-----\n"


class FakeBackend(PKIBackend):
    """Authority double that hands out sequential serials and records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, datetime.timedelta]] = []
        self.fail_for: set[str] = set()
        self.delay = 0.0
        self.closed = False
        self.issuing_ca = FAKE_CA_PEM
        self.on_issue: Callable[[str], None] | None = None
        self._serials = itertools.count(1)
        self._lock = threading.Lock()

    def issue(self, common_name: str, validity: datetime.timedelta) -> IssuanceResult:
        with self._lock:
            self.calls.append((common_name, validity))
            serial = next(self._serials)
        if self.on_issue is not None:
            self.on_issue(common_name)
        if self.delay:
            time.sleep(self.delay)
        if common_name in self.fail_for:
            raise IssuanceError(common_name, "backend refused the request")
        return IssuanceResult.from_response(
            common_name,
            validity,
            {
                "serial_number": f"{serial:04x}",
                "certificate": f"cert-{common_name}-{serial}",
                "private_key": f"key-{common_name}-{serial}",
                "issuing_ca": self.issuing_ca,
            },
        )

    def calls_for(self, common_name: str) -> int:
        with self._lock:
            return sum(1 for cn, _ in self.calls if cn == common_name)

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime.datetime | None = None) -> None:
        self.now = start or datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> ManagerSettings:
    return ManagerSettings(
        service_cert_validity=datetime.timedelta(hours=1),
        renew_before_expiry=datetime.timedelta(minutes=5),
    )


@pytest.fixture()
def manager(
    backend: FakeBackend, settings: ManagerSettings, clock: FakeClock
) -> Iterator[CertManager]:
    mgr = CertManager(backend, settings, clock=clock, start_rotor=False)
    yield mgr
    mgr.close()
