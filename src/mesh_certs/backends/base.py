"""PKI backend contract.

A backend issues certificates and nothing else. Its :meth:`PKIBackend.issue`
returns an :class:`IssuanceResult`, which the manager turns into a
:class:`~mesh_certs.certificates.certificate.Certificate`.
"""
from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mesh_certs.errors import MalformedResponseError


class IssuanceResult(BaseModel):
    """Validated result of one issuance call."""

    model_config = ConfigDict(frozen=True)

    serial_number: str = Field(min_length=1)
    certificate: bytes = Field(min_length=1)
    private_key: bytes = Field(min_length=1)
    issuing_ca: bytes = Field(min_length=1)
    common_name: str = Field(min_length=1)
    ttl: datetime.timedelta

    @classmethod
    def from_response(
        cls,
        common_name: str,
        validity: datetime.timedelta,
        data: Mapping[str, Any] | None,
    ) -> "IssuanceResult":
        """Validate a raw backend payload.

        Parameters
        ----------
        common_name:
            The common name that was requested.
        validity:
            The validity period that was requested.
        data:
            Raw response fields (``serial_number``, ``certificate``,
            ``private_key``, ``issuing_ca``).

        Raises
        ------
        MalformedResponseError
            If *data* is missing or any required field is absent or invalid.
        """
        if not isinstance(data, Mapping):
            raise MalformedResponseError(common_name, "response carries no data")
        try:
            return cls.model_validate(
                {
                    "serial_number": data.get("serial_number"),
                    "certificate": data.get("certificate"),
                    "private_key": data.get("private_key"),
                    "issuing_ca": data.get("issuing_ca"),
                    "common_name": common_name,
                    "ttl": validity,
                }
            )
        except ValidationError as exc:
            fields = ", ".join(str(err["loc"][0]) for err in exc.errors())
            raise MalformedResponseError(
                common_name, f"invalid or missing field(s): {fields}"
            ) from exc


class PKIBackend(ABC):
    """Abstract base class for certificate-issuing authorities."""

    @abstractmethod
    def issue(self, common_name: str, validity: datetime.timedelta) -> IssuanceResult:
        """Issue a new certificate for *common_name* valid for *validity*.

        Raises
        ------
        IssuanceError
            If the authority rejects or fails the request.
        """

    def close(self) -> None:
        """Release any connection held by the backend."""
