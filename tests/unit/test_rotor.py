"""Tests for mesh_certs.rotation.rotor — Rotor and should_rotate."""
from __future__ import annotations

import datetime
import queue
import threading
from unittest.mock import MagicMock

import pytest

from mesh_certs.certificates.certificate import Certificate
from mesh_certs.errors import IssuanceError, ManagerClosedError, NotFoundError
from mesh_certs.rotation.rotor import RotationResult, RotationStatus, Rotor, should_rotate

HOUR = datetime.timedelta(hours=1)
NOW = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)


def _cert(remaining: datetime.timedelta, common_name: str = "svc-a") -> Certificate:
    return Certificate(
        common_name=common_name,
        expiration=NOW + remaining,
        cert_chain=b"cert",
        private_key=b"key",
        issuing_ca=b"ca",
        serial_number="01",
    )


# ---------------------------------------------------------------------------
# should_rotate
# ---------------------------------------------------------------------------


class TestShouldRotate:
    def test_fresh_certificate_not_rotated(self) -> None:
        assert not should_rotate(_cert(HOUR), datetime.timedelta(minutes=5), NOW)

    def test_within_margin_rotated(self) -> None:
        assert should_rotate(_cert(datetime.timedelta(minutes=4)), datetime.timedelta(minutes=5), NOW)

    def test_exactly_at_margin_rotated(self) -> None:
        margin = datetime.timedelta(minutes=5)
        assert should_rotate(_cert(margin), margin, NOW)

    def test_expired_rotated(self) -> None:
        assert should_rotate(_cert(-HOUR), datetime.timedelta(0), NOW)

    def test_zero_margin_only_rotates_expired(self) -> None:
        assert not should_rotate(_cert(datetime.timedelta(seconds=1)), datetime.timedelta(0), NOW)


# ---------------------------------------------------------------------------
# Rotor.tick against a real manager
# ---------------------------------------------------------------------------


class TestRotorTick:
    def test_nothing_due(self, manager) -> None:
        manager.issue_certificate("svc-a", HOUR)
        assert manager.rotor.tick() == []

    def test_due_certificate_rotated(self, manager, clock) -> None:
        before = manager.issue_certificate("svc-a", HOUR)
        clock.advance(minutes=56)
        results = manager.rotor.tick()
        after = manager.get_certificate("svc-a")
        assert results == [
            RotationResult(
                common_name="svc-a",
                status=RotationStatus.ROTATED,
                old_serial=before.serial_number,
                new_serial=after.serial_number,
            )
        ]
        assert after.serial_number != before.serial_number

    def test_expired_certificate_rotated(self, manager, clock) -> None:
        manager.issue_certificate("svc-a", HOUR)
        clock.advance(hours=5)
        results = manager.rotor.tick()
        assert [r.status for r in results] == [RotationStatus.ROTATED]
        assert not manager.get_certificate("svc-a").is_expired(clock())

    def test_only_due_certificates_rotated(self, manager, backend, clock) -> None:
        manager.issue_certificate("short", datetime.timedelta(minutes=10))
        manager.issue_certificate("long", datetime.timedelta(days=1))
        clock.advance(minutes=6)
        results = manager.rotor.tick()
        assert [r.common_name for r in results] == ["short"]
        assert backend.calls_for("long") == 1

    def test_failure_does_not_abort_scan(self, manager, backend, clock) -> None:
        names = ["svc-a", "svc-b", "svc-c"]
        for name in names:
            manager.issue_certificate(name, HOUR)
        previous_b = manager.get_certificate("svc-b")
        backend.fail_for.add("svc-b")
        clock.advance(minutes=58)

        results = {r.common_name: r for r in manager.rotor.tick()}

        assert results["svc-a"].status is RotationStatus.ROTATED
        assert results["svc-c"].status is RotationStatus.ROTATED
        assert results["svc-b"].status is RotationStatus.FAILED
        assert results["svc-b"].new_serial is None
        assert "svc-b" in results["svc-b"].error
        # The failed certificate is left in place and retried next tick.
        assert manager.get_certificate("svc-b") is previous_b
        backend.fail_for.clear()
        retry = manager.rotor.tick()
        assert [r.common_name for r in retry] == ["svc-b"]
        assert retry[0].status is RotationStatus.ROTATED

    def test_failure_logged(self, manager, backend, clock, caplog) -> None:
        manager.issue_certificate("svc-a", HOUR)
        backend.fail_for.add("svc-a")
        clock.advance(hours=2)
        manager.rotor.tick()
        assert any("Failed to rotate certificate CN=svc-a" in r.getMessage() for r in caplog.records)

    def test_one_announcement_per_rotation(self, manager, clock) -> None:
        manager.issue_certificate("svc-a", HOUR)
        manager.issue_certificate("svc-b", HOUR)
        clock.advance(minutes=59)
        manager.rotor.tick()
        stream = manager.get_announcements_channel()
        assert sorted(stream.get_nowait().common_name for _ in range(2)) == ["svc-a", "svc-b"]
        assert stream.qsize() == 0

    def test_root_never_rotated(self, manager, backend, clock) -> None:
        root = manager.get_root_certificate()
        clock.advance(days=365 * 20)
        assert manager.rotor.tick() == []
        assert manager.get_root_certificate() is root
        assert backend.calls_for("localhost") == 1

    def test_release_during_rotation_is_not_undone(self, manager, backend, clock) -> None:
        cert = manager.issue_certificate("svc-a", HOUR)
        clock.advance(minutes=58)

        def release_mid_issue(common_name: str) -> None:
            if common_name == "svc-a":
                manager.release_certificate("svc-a")

        backend.on_issue = release_mid_issue
        results = manager.rotor.tick()

        assert results == [
            RotationResult(
                common_name="svc-a",
                status=RotationStatus.SKIPPED,
                old_serial=cert.serial_number,
            )
        ]
        with pytest.raises(NotFoundError):
            manager.get_certificate("svc-a")
        assert manager.list_certificates() == []
        with pytest.raises(queue.Empty):
            manager.get_announcements_channel().get_nowait()

    def test_reissue_during_rotation_keeps_newer_entry(self, manager, backend, clock) -> None:
        manager.issue_certificate("svc-a", HOUR)
        clock.advance(minutes=58)
        replacement: list[Certificate] = []

        def reissue_mid_rotation(common_name: str) -> None:
            if common_name == "svc-a" and not replacement:
                backend.on_issue = None
                manager.release_certificate("svc-a")
                replacement.append(manager.issue_certificate("svc-a", HOUR))

        backend.on_issue = reissue_mid_rotation
        results = manager.rotor.tick()

        assert [r.status for r in results] == [RotationStatus.SKIPPED]
        assert manager.get_certificate("svc-a") is replacement[0]

    def test_tick_after_close_issues_nothing(self, manager, backend, clock) -> None:
        manager.issue_certificate("svc-a", HOUR)
        clock.advance(hours=2)
        manager.close()
        calls = len(backend.calls)
        assert manager.rotor.tick() == []
        assert len(backend.calls) == calls


class TestReleaseScenario:
    def test_issue_rotate_release(self, manager, clock) -> None:
        issued_at = clock()
        first = manager.issue_certificate("svc-a", HOUR)
        assert first.expiration == issued_at + HOUR

        clock.advance(minutes=57)
        manager.rotor.tick()
        rotated = manager.get_certificate("svc-a")
        assert rotated.serial_number != first.serial_number
        assert first not in manager.list_certificates()

        stream = manager.get_announcements_channel()
        assert stream.get_nowait().new_serial == rotated.serial_number
        assert stream.qsize() == 0

        manager.release_certificate("svc-a")
        with pytest.raises(NotFoundError):
            manager.get_certificate("svc-a")


# ---------------------------------------------------------------------------
# Rotor against a stub manager
# ---------------------------------------------------------------------------


@pytest.fixture()
def stub_manager() -> MagicMock:
    stub = MagicMock()
    stub.list_certificates.return_value = [
        _cert(-HOUR, "a"),
        _cert(-HOUR, "b"),
    ]
    return stub


class TestRotorLifecycle:
    def test_interval_must_be_positive(self, stub_manager: MagicMock) -> None:
        with pytest.raises(ValueError):
            Rotor(stub_manager, interval=datetime.timedelta(0))

    def test_manager_closed_mid_scan_stops_tick(self, stub_manager: MagicMock) -> None:
        stub_manager.rotate_certificate.side_effect = ManagerClosedError("closed")
        rotor = Rotor(stub_manager, clock=lambda: NOW)
        assert rotor.tick() == []
        assert stub_manager.rotate_certificate.call_count == 1

    def test_stop_requested_skips_remaining(self, stub_manager: MagicMock) -> None:
        rotor = Rotor(stub_manager, clock=lambda: NOW)

        def rotate(common_name: str, **kwargs: object) -> Certificate:
            rotor.stop()
            return _cert(HOUR, common_name)

        stub_manager.rotate_certificate.side_effect = rotate
        results = rotor.tick()
        assert [r.common_name for r in results] == ["a"]

    def test_background_thread_ticks_until_stopped(self, stub_manager: MagicMock) -> None:
        ticked = threading.Event()

        def rotate(common_name: str, **kwargs: object) -> Certificate:
            ticked.set()
            return _cert(HOUR, common_name)

        stub_manager.rotate_certificate.side_effect = rotate
        rotor = Rotor(stub_manager, interval=datetime.timedelta(milliseconds=10), clock=lambda: NOW)
        rotor.start()
        assert ticked.wait(5)
        rotor.stop(timeout=5)
        assert not rotor.running
        calls = stub_manager.rotate_certificate.call_count
        ticked.clear()
        assert not ticked.wait(0.05)
        assert stub_manager.rotate_certificate.call_count == calls

    def test_unexpected_error_keeps_loop_alive(self, stub_manager: MagicMock) -> None:
        calls = {"n": 0}
        recovered = threading.Event()

        def list_certificates() -> list[Certificate]:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("transient")
            recovered.set()
            return []

        stub_manager.list_certificates.side_effect = list_certificates
        rotor = Rotor(stub_manager, interval=datetime.timedelta(milliseconds=10))
        rotor.start()
        try:
            assert recovered.wait(5)
        finally:
            rotor.stop(timeout=5)

    def test_cannot_start_twice(self, stub_manager: MagicMock) -> None:
        rotor = Rotor(stub_manager, interval=datetime.timedelta(seconds=60))
        rotor.start()
        try:
            with pytest.raises(RuntimeError, match="already running"):
                rotor.start()
        finally:
            rotor.stop(timeout=5)

    def test_cannot_restart_after_stop(self, stub_manager: MagicMock) -> None:
        rotor = Rotor(stub_manager)
        rotor.stop()
        with pytest.raises(RuntimeError, match="stopped"):
            rotor.start()

    def test_issuance_errors_reported_not_raised(self, stub_manager: MagicMock) -> None:
        stub_manager.rotate_certificate.side_effect = IssuanceError("a", "down")
        rotor = Rotor(stub_manager, clock=lambda: NOW)
        results = rotor.tick()
        assert [r.status for r in results] == [RotationStatus.FAILED, RotationStatus.FAILED]

    def test_released_certificate_reported_skipped(self, stub_manager: MagicMock) -> None:
        stub_manager.rotate_certificate.side_effect = NotFoundError("a")
        rotor = Rotor(stub_manager, clock=lambda: NOW)
        results = rotor.tick()
        assert [r.status for r in results] == [RotationStatus.SKIPPED, RotationStatus.SKIPPED]
        assert all(r.new_serial is None for r in results)

    def test_rotation_conditioned_on_scanned_serial(self, stub_manager: MagicMock) -> None:
        stub_manager.rotate_certificate.return_value = _cert(HOUR, "a")
        Rotor(stub_manager, clock=lambda: NOW).tick()
        stub_manager.rotate_certificate.assert_any_call("a", expected_serial="01")
