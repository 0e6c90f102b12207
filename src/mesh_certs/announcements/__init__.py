"""Certificate change announcements."""
from __future__ import annotations

from mesh_certs.announcements.channel import (
    Announcement,
    AnnouncementChannel,
    AnnouncementStream,
    AnnouncementType,
    OverflowPolicy,
)

__all__ = [
    "Announcement",
    "AnnouncementChannel",
    "AnnouncementStream",
    "AnnouncementType",
    "OverflowPolicy",
]
