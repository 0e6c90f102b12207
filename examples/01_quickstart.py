#!/usr/bin/env python3
"""Example: Quickstart

Issues a workload certificate from the in-process CA, looks it up again
from the cache and shows the root certificate learned at startup.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install mesh-certs
"""
from __future__ import annotations

from datetime import timedelta

import mesh_certs
from mesh_certs import CertManager, LocalCABackend


def main() -> None:
    print(f"mesh-certs version: {mesh_certs.__version__}")

    with CertManager(LocalCABackend()) as manager:
        # Step 1: Issue a certificate
        cert = manager.issue_certificate("bookstore.mesh", timedelta(hours=1))
        print(f"Issued CN={cert.common_name} serial={cert.serial_number}")

        # Step 2: A second request is served from the cache
        again = manager.issue_certificate("bookstore.mesh", timedelta(hours=1))
        print(f"Cached copy has the same serial: {again.serial_number == cert.serial_number}")

        # Step 3: Root certificate
        root = manager.get_root_certificate()
        print(f"Root CN={root.common_name} expires {root.expiration:%Y-%m-%d}")

    print("\nQuickstart complete.")


if __name__ == "__main__":
    main()
