"""Announcement channel for certificate changes.

The manager publishes an :class:`Announcement` on every successful
rotation. Consumers read from an :class:`AnnouncementStream`. Each stream is
a bounded queue with an explicit overflow policy, so publishing never
blocks the rotation path even when nobody is reading.
"""
from __future__ import annotations

import datetime
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, cast

from mesh_certs.errors import ChannelClosedError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AnnouncementType(str, Enum):
    """Kind of change being announced."""

    CERTIFICATE_ROTATED = "certificate_rotated"


class OverflowPolicy(str, Enum):
    """What a full stream does with a new announcement."""

    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"


@dataclass(frozen=True)
class Announcement:
    """A change to mesh identity material.

    Parameters
    ----------
    type:
        Kind of change.
    common_name:
        Identity whose certificate changed.
    new_serial:
        Serial number of the replacement certificate.
    old_serial:
        Serial number that was replaced, or None if nothing was cached.
    timestamp:
        UTC instant the announcement was created.
    """

    type: AnnouncementType
    common_name: str
    new_serial: str
    old_serial: str | None = None
    timestamp: datetime.datetime = field(default_factory=_utcnow)


_CLOSED = object()


class AnnouncementStream:
    """Read side of the channel: a bounded, non-blocking-on-write queue.

    Parameters
    ----------
    maxsize:
        Maximum number of undelivered announcements held.
    overflow:
        Policy applied when a publish finds the stream full.
    """

    def __init__(
        self,
        maxsize: int = 64,
        overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        if maxsize < 1:
            raise ValueError(f"maxsize must be at least 1, got {maxsize}")
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._overflow = overflow
        self._lock = threading.Lock()
        self._closed = False
        self._dropped = 0

    # ------------------------------------------------------------------
    # Write side (used by AnnouncementChannel)
    # ------------------------------------------------------------------

    def _offer(self, announcement: Announcement) -> bool:
        """Enqueue *announcement* without blocking, applying the overflow policy.

        Returns False if the announcement itself was not delivered.
        """
        with self._lock:
            if self._closed:
                logger.debug(
                    "Announcement stream closed, not delivering %s for CN=%s",
                    announcement.type.value,
                    announcement.common_name,
                )
                return False
            while True:
                try:
                    self._queue.put_nowait(announcement)
                    return True
                except queue.Full:
                    if self._overflow is OverflowPolicy.DROP_NEWEST:
                        self._dropped += 1
                        logger.warning(
                            "Announcement stream full, dropped newest %s for CN=%s",
                            announcement.type.value,
                            announcement.common_name,
                        )
                        return False
                    try:
                        oldest = cast(Announcement, self._queue.get_nowait())
                    except queue.Empty:
                        continue
                    self._dropped += 1
                    logger.warning(
                        "Announcement stream full, dropped oldest %s for CN=%s",
                        oldest.type.value,
                        oldest.common_name,
                    )

    def _close(self) -> None:
        with self._lock:
            if self._closed:
                return
            # The sentinel always fits: make room by discarding the oldest item.
            while True:
                try:
                    self._queue.put_nowait(_CLOSED)
                    break
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self._dropped += 1
                    except queue.Empty:
                        pass
            self._closed = True

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get(self, timeout: float | None = None) -> Announcement:
        """Block until an announcement is available and return it.

        Raises
        ------
        queue.Empty
            If *timeout* elapses first.
        ChannelClosedError
            If the stream was closed and every announcement consumed.
        """
        item = self._queue.get(timeout=timeout)
        return self._unwrap(item)

    def get_nowait(self) -> Announcement:
        """Return an announcement if one is pending, else raise queue.Empty."""
        return self._unwrap(self._queue.get_nowait())

    def _unwrap(self, item: object) -> Announcement:
        if item is _CLOSED:
            # Leave the sentinel for any other reader.
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosedError("announcement stream is closed")
        return cast(Announcement, item)

    def __iter__(self) -> Iterator[Announcement]:
        while True:
            try:
                yield self.get()
            except ChannelClosedError:
                return

    def qsize(self) -> int:
        """Approximate number of pending announcements."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    @property
    def dropped(self) -> int:
        """Number of announcements discarded by the overflow policy."""
        with self._lock:
            return self._dropped

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed


class AnnouncementChannel:
    """Write side: fans every announcement out to all subscribed streams.

    Parameters
    ----------
    maxsize:
        Default capacity for new streams.
    overflow:
        Default overflow policy for new streams.
    """

    def __init__(
        self,
        maxsize: int = 64,
        overflow: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        self._maxsize = maxsize
        self._overflow = overflow
        self._streams: list[AnnouncementStream] = []
        self._lock = threading.Lock()
        self._closed = False

    def subscribe(self, maxsize: int | None = None) -> AnnouncementStream:
        """Create and register a new stream.

        Raises
        ------
        ChannelClosedError
            If the channel has been closed.
        """
        stream = AnnouncementStream(maxsize=maxsize or self._maxsize, overflow=self._overflow)
        with self._lock:
            if self._closed:
                raise ChannelClosedError("announcement channel is closed")
            self._streams.append(stream)
        return stream

    def unsubscribe(self, stream: AnnouncementStream) -> None:
        """Detach and close *stream*. Unknown streams are ignored."""
        with self._lock:
            if stream in self._streams:
                self._streams.remove(stream)
        stream._close()

    def publish(self, announcement: Announcement) -> int:
        """Deliver *announcement* to every stream without blocking.

        Returns
        -------
        int
            Number of streams that accepted the announcement.
        """
        with self._lock:
            streams = list(self._streams)
        delivered = 0
        for stream in streams:
            if stream._offer(announcement):
                delivered += 1
        return delivered

    def close(self) -> None:
        """Close every stream; readers drain what is pending then stop."""
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()
            self._closed = True
        for stream in streams:
            stream._close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._streams)
