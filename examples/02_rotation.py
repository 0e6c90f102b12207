#!/usr/bin/env python3
"""Example: Automatic rotation

Issues short-lived certificates and lets the rotor renew them, printing
each announcement a downstream consumer would receive.

Usage:
    python examples/02_rotation.py

Requirements:
    pip install mesh-certs
"""
from __future__ import annotations

import logging
import queue
import time
from datetime import timedelta

from mesh_certs import CertManager, LocalCABackend, ManagerSettings


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")

    settings = ManagerSettings(
        service_cert_validity=timedelta(seconds=6),
        renew_before_expiry=timedelta(seconds=3),
        check_interval=timedelta(seconds=1),
    )
    with CertManager(LocalCABackend(), settings) as manager:
        for name in ("bookstore.mesh", "bookbuyer.mesh"):
            manager.issue_certificate(name, settings.service_cert_validity)

        stream = manager.get_announcements_channel()
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            try:
                announcement = stream.get(timeout=1)
            except queue.Empty:
                continue
            print(
                f"rotated {announcement.common_name}: "
                f"{announcement.old_serial} -> {announcement.new_serial}"
            )


if __name__ == "__main__":
    main()
