"""Manager settings.

Settings are read once when a :class:`~mesh_certs.certificates.manager.CertManager`
is constructed. They can be built directly, or from ``MESH_CERTS_*``
environment variables with :meth:`ManagerSettings.from_env`.
"""
from __future__ import annotations

import datetime
import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from mesh_certs.announcements.channel import OverflowPolicy

ENV_PREFIX = "MESH_CERTS_"


class ManagerSettings(BaseModel):
    """Tunables for the certificate manager and its rotor.

    Durations accept a :class:`datetime.timedelta`, a number of seconds, or
    an ISO 8601 duration string.
    """

    model_config = ConfigDict(frozen=True)

    service_cert_validity: datetime.timedelta = datetime.timedelta(hours=24)
    renew_before_expiry: datetime.timedelta = datetime.timedelta(seconds=30)
    check_interval: datetime.timedelta = datetime.timedelta(seconds=5)
    root_validity: datetime.timedelta = datetime.timedelta(days=3650)
    probe_validity: datetime.timedelta = datetime.timedelta(seconds=1)
    probe_common_name: str = Field(default="localhost", min_length=1)
    announcement_buffer: int = Field(default=64, ge=1)
    announcement_overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST

    @field_validator(
        "service_cert_validity",
        "check_interval",
        "root_validity",
        "probe_validity",
    )
    @classmethod
    def _positive(cls, value: datetime.timedelta) -> datetime.timedelta:
        if value <= datetime.timedelta(0):
            raise ValueError("duration must be positive")
        return value

    @field_validator("renew_before_expiry")
    @classmethod
    def _non_negative(cls, value: datetime.timedelta) -> datetime.timedelta:
        if value < datetime.timedelta(0):
            raise ValueError("duration must not be negative")
        return value

    @model_validator(mode="after")
    def _margin_below_validity(self) -> "ManagerSettings":
        # A rotated certificate must not already be due on the next check.
        if self.renew_before_expiry >= self.service_cert_validity:
            raise ValueError(
                "renew_before_expiry must be shorter than service_cert_validity"
            )
        return self

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
    ) -> "ManagerSettings":
        """Build settings from environment variables.

        Each field maps to ``<prefix><FIELD_NAME>`` in upper case, for example
        ``MESH_CERTS_SERVICE_CERT_VALIDITY=3600``. Unset variables keep their
        defaults.

        Raises
        ------
        pydantic.ValidationError
            If a variable holds an invalid value.
        """
        source = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name, info in cls.model_fields.items():
            raw = source.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            if info.annotation is datetime.timedelta:
                values[name] = _coerce_seconds(raw)
            else:
                values[name] = raw
        return cls.model_validate(values)


def _coerce_seconds(raw: str) -> object:
    """Turn numeric duration strings into floats so they parse as seconds."""
    try:
        return float(raw)
    except ValueError:
        return raw
