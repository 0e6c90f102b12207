"""CLI entry point for mesh-certs.

Invoked as::

    mesh-certs [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m mesh_certs.cli.main

Commands
--------
version   Show version information
issue     Issue (or fetch from cache) a certificate for a common name
root      Show the root certificate learned from the authority
watch     Run the rotor and print rotation announcements as they happen
"""
from __future__ import annotations

import datetime
import logging
import queue
import sys
import time

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from mesh_certs.backends.base import PKIBackend
from mesh_certs.certificates.certificate import Certificate
from mesh_certs.certificates.manager import CertManager
from mesh_certs.config import ManagerSettings
from mesh_certs.errors import BackendUnavailableError, ChannelClosedError, IssuanceError

console = Console()


# ------------------------------------------------------------------
# Shared options
# ------------------------------------------------------------------


def _backend_options(func):  # type: ignore[no-untyped-def]
    func = click.option(
        "--role",
        default="mesh",
        show_default=True,
        help="Vault PKI role to issue against.",
    )(func)
    func = click.option(
        "--vault-token",
        envvar="VAULT_TOKEN",
        default=None,
        help="Vault token (defaults to $VAULT_TOKEN).",
    )(func)
    func = click.option(
        "--vault-addr",
        envvar="VAULT_ADDR",
        default="http://127.0.0.1:8200",
        show_default=True,
        help="Vault server address (defaults to $VAULT_ADDR).",
    )(func)
    func = click.option(
        "--backend",
        type=click.Choice(["local", "vault"]),
        default="local",
        show_default=True,
        help="Certificate authority to issue from.",
    )(func)
    return func


def _make_backend(
    backend: str, vault_addr: str, vault_token: str | None, role: str
) -> PKIBackend:
    if backend == "vault":
        from mesh_certs.backends.vault import VaultBackend

        if not vault_token:
            raise click.UsageError("--vault-token or $VAULT_TOKEN is required for --backend vault")
        return VaultBackend(vault_addr, vault_token, role)

    from mesh_certs.backends.local import LocalCABackend

    return LocalCABackend()


def _open_manager(
    backend: str,
    vault_addr: str,
    vault_token: str | None,
    role: str,
    settings: ManagerSettings,
    start_rotor: bool = False,
) -> CertManager:
    try:
        return CertManager(
            _make_backend(backend, vault_addr, vault_token, role),
            settings,
            start_rotor=start_rotor,
        )
    except (BackendUnavailableError, IssuanceError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


def _cert_table(title: str, cert: Certificate) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Common name", cert.common_name)
    table.add_row("Serial", cert.serial_number or "(unknown)")
    table.add_row("Expires", cert.expiration.isoformat())
    return table


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="mesh-certs")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def cli(log_level: str) -> None:
    """Issue, cache and rotate service mesh identity certificates."""
    logging.basicConfig(level=getattr(logging, log_level.upper()))


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from mesh_certs import __version__

    console.print(f"[bold]mesh-certs[/bold] v{__version__}")


# ------------------------------------------------------------------
# issue
# ------------------------------------------------------------------


@cli.command(name="issue")
@click.argument("common_name")
@click.option(
    "--validity",
    type=click.IntRange(min=1),
    default=3600,
    show_default=True,
    help="Certificate lifetime in seconds.",
)
@click.option("--show-pem", is_flag=True, help="Print the PEM certificate and key.")
@_backend_options
def issue_command(
    common_name: str,
    validity: int,
    show_pem: bool,
    backend: str,
    vault_addr: str,
    vault_token: str | None,
    role: str,
) -> None:
    """Issue a certificate for COMMON_NAME."""
    with _open_manager(backend, vault_addr, vault_token, role, ManagerSettings()) as manager:
        try:
            cert = manager.issue_certificate(
                common_name, datetime.timedelta(seconds=validity)
            )
        except IssuanceError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)

        console.print(_cert_table(f"Certificate: {common_name}", cert))
        if show_pem:
            console.print(cert.cert_chain.decode(), markup=False)
            console.print(cert.private_key.decode(), markup=False)


# ------------------------------------------------------------------
# root
# ------------------------------------------------------------------


@cli.command(name="root")
@click.option("--show-pem", is_flag=True, help="Print the PEM root certificate.")
@_backend_options
def root_command(
    show_pem: bool,
    backend: str,
    vault_addr: str,
    vault_token: str | None,
    role: str,
) -> None:
    """Show the root certificate bootstrapped from the authority."""
    with _open_manager(backend, vault_addr, vault_token, role, ManagerSettings()) as manager:
        root = manager.get_root_certificate()
        console.print(_cert_table("Root certificate", root))
        if show_pem:
            console.print(root.cert_chain.decode(), markup=False)


# ------------------------------------------------------------------
# watch
# ------------------------------------------------------------------


@cli.command(name="watch")
@click.argument("common_names", nargs=-1, required=True)
@click.option(
    "--validity",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Lifetime in seconds of issued and rotated certificates.",
)
@click.option(
    "--renew-before",
    type=click.IntRange(min=0),
    default=5,
    show_default=True,
    help="Rotate when this many seconds or fewer remain.",
)
@click.option(
    "--interval",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Seconds between rotor checks.",
)
@click.option(
    "--duration",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="How long to watch, in seconds.",
)
@_backend_options
def watch_command(
    common_names: tuple[str, ...],
    validity: int,
    renew_before: int,
    interval: int,
    duration: int,
    backend: str,
    vault_addr: str,
    vault_token: str | None,
    role: str,
) -> None:
    """Issue COMMON_NAMES and print every rotation for --duration seconds."""
    try:
        settings = ManagerSettings(
            service_cert_validity=datetime.timedelta(seconds=validity),
            renew_before_expiry=datetime.timedelta(seconds=renew_before),
            check_interval=datetime.timedelta(seconds=interval),
        )
    except ValidationError as exc:
        raise click.UsageError(str(exc)) from exc
    with _open_manager(
        backend, vault_addr, vault_token, role, settings, start_rotor=True
    ) as manager:
        for common_name in common_names:
            try:
                cert = manager.issue_certificate(common_name, settings.service_cert_validity)
            except IssuanceError as exc:
                console.print(f"[red]Error:[/red] {exc}")
                sys.exit(1)
            console.print(
                f"[green]Issued[/green] {common_name} serial={cert.serial_number}"
            )

        stream = manager.get_announcements_channel()
        deadline = time.monotonic() + duration
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                announcement = stream.get(timeout=remaining)
            except (queue.Empty, ChannelClosedError):
                break
            console.print(
                f"[yellow]Rotated[/yellow] {announcement.common_name} "
                f"{announcement.old_serial} -> {announcement.new_serial}"
            )


if __name__ == "__main__":
    cli()
