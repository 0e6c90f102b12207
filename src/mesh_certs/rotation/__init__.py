"""Expiry-driven certificate rotation."""
from __future__ import annotations

from mesh_certs.rotation.rotor import RotationResult, RotationStatus, Rotor, should_rotate

__all__ = ["RotationResult", "RotationStatus", "Rotor", "should_rotate"]
