#!/usr/bin/env python3
"""Example: HashiCorp Vault backend

Connects to a Vault PKI secrets engine and issues a certificate.

Usage:
    VAULT_ADDR=http://127.0.0.1:8200 VAULT_TOKEN=... python examples/03_vault.py

Requirements:
    pip install mesh-certs
    A Vault server with the PKI engine mounted at ``pki`` and a role
    named ``mesh`` allowing the requested common names.
"""
from __future__ import annotations

import os
from datetime import timedelta

from mesh_certs import BackendUnavailableError, CertManager, ManagerSettings


def main() -> None:
    try:
        manager = CertManager.from_vault(
            os.environ.get("VAULT_ADDR", "http://127.0.0.1:8200"),
            os.environ["VAULT_TOKEN"],
            role="mesh",
            settings=ManagerSettings.from_env(),
        )
    except BackendUnavailableError as exc:
        raise SystemExit(str(exc)) from exc

    with manager:
        cert = manager.issue_certificate("bookstore.mesh", timedelta(hours=1))
        print(f"Issued CN={cert.common_name} serial={cert.serial_number}")
        print(cert.cert_chain.decode())


if __name__ == "__main__":
    main()
