"""HashiCorp Vault PKI backend.

Issues certificates through the PKI secrets engine's
``<mount>/issue/<role>`` endpoint using :mod:`hvac`.
"""
from __future__ import annotations

import datetime
import logging
import math

import hvac
from hvac.exceptions import VaultError
from requests.exceptions import RequestException

from mesh_certs.backends.base import IssuanceResult, PKIBackend
from mesh_certs.errors import BackendUnavailableError, IssuanceError

logger = logging.getLogger(__name__)


def format_ttl(validity: datetime.timedelta) -> str:
    """Render a validity period as a Vault TTL string in whole seconds."""
    return f"{max(1, math.ceil(validity.total_seconds()))}s"


class VaultBackend(PKIBackend):
    """PKI backend that talks to HashiCorp Vault.

    Parameters
    ----------
    address:
        Vault server URL, e.g. ``https://vault.mesh:8200``.
    token:
        Vault token with permission to issue against *role*.
    role:
        PKI role scoping which identities may be issued.
    mount_point:
        Mount path of the PKI secrets engine.
    verify:
        TLS verification flag or CA bundle path, passed to hvac.
    timeout:
        Per-request timeout in seconds.

    Raises
    ------
    BackendUnavailableError
        If the client cannot be created or the token is not accepted.
    """

    def __init__(
        self,
        address: str,
        token: str,
        role: str,
        mount_point: str = "pki",
        verify: bool | str = True,
        timeout: int = 30,
    ) -> None:
        self._address = address
        self._role = role
        self._mount_point = mount_point
        try:
            self._client = hvac.Client(url=address, token=token, verify=verify, timeout=timeout)
            authenticated = self._client.is_authenticated()
        except (VaultError, RequestException, ValueError) as exc:
            raise BackendUnavailableError(address, str(exc)) from exc
        if not authenticated:
            raise BackendUnavailableError(address, "token was not accepted")

        logger.info("Created Vault backend with role=%r at %s", role, address)

    @property
    def role(self) -> str:
        return self._role

    def issue(self, common_name: str, validity: datetime.timedelta) -> IssuanceResult:
        """Issue a certificate through ``<mount>/issue/<role>``."""
        try:
            response = self._client.secrets.pki.generate_certificate(
                name=self._role,
                common_name=common_name,
                extra_params={"ttl": format_ttl(validity)},
                mount_point=self._mount_point,
            )
        except (VaultError, RequestException) as exc:
            logger.error("Error issuing new certificate for CN=%s: %s", common_name, exc)
            raise IssuanceError(common_name, str(exc)) from exc

        data = response.get("data") if isinstance(response, dict) else None
        return IssuanceResult.from_response(common_name, validity, data)

    def close(self) -> None:
        self._client.adapter.close()
