"""Persistence boundary for stream state.

The supervisor reports what it is doing through a StateSynchronizer; the
actual store (database, API, ...) lives outside this package. All calls
are best-effort: SafeStateSynchronizer logs and swallows store errors so a
persistence outage never interrupts streaming.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Audit log actions written by the supervisor."""

    STARTED = "STARTED"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class StateSynchronizer(Protocol):
    """Store for per-stream status flags and the audit log."""

    def set_current_video(self, job_id: str, filename: str | None) -> None:
        """Record the video currently playing, or None when idle."""
        ...

    def set_streaming(self, job_id: str, streaming: bool) -> None:
        """Record whether the stream is live."""
        ...

    def append_audit_event(
        self, job_id: str, action: AuditAction, message: str
    ) -> None:
        """Append an entry to the stream's audit log."""
        ...


class SafeStateSynchronizer:
    """Wraps a StateSynchronizer so that failures are logged, never raised."""

    def __init__(self, inner: StateSynchronizer) -> None:
        self._inner = inner

    @property
    def inner(self) -> StateSynchronizer:
        return self._inner

    def set_current_video(self, job_id: str, filename: str | None) -> bool:
        try:
            self._inner.set_current_video(job_id, filename)
        except Exception as e:
            logger.warning("Failed to persist current video for %s: %s", job_id, e)
            return False
        return True

    def set_streaming(self, job_id: str, streaming: bool) -> bool:
        try:
            self._inner.set_streaming(job_id, streaming)
        except Exception as e:
            logger.warning("Failed to persist streaming flag for %s: %s", job_id, e)
            return False
        return True

    def append_audit_event(
        self, job_id: str, action: AuditAction, message: str
    ) -> bool:
        try:
            self._inner.append_audit_event(job_id, action, message)
        except Exception as e:
            logger.warning(
                "Failed to write %s audit event for %s: %s", action.value, job_id, e
            )
            return False
        return True

    def mark_stopped(self, job_id: str, action: AuditAction, message: str) -> None:
        """Persist the idle state and a terminal audit event.

        Each write is attempted independently.
        """
        self.set_streaming(job_id, False)
        self.set_current_video(job_id, None)
        self.append_audit_event(job_id, action, message)


class NullStateSynchronizer:
    """StateSynchronizer that only logs."""

    def set_current_video(self, job_id: str, filename: str | None) -> None:
        logger.debug("Stream %s current video: %s", job_id, filename)

    def set_streaming(self, job_id: str, streaming: bool) -> None:
        logger.debug("Stream %s streaming: %s", job_id, streaming)

    def append_audit_event(
        self, job_id: str, action: AuditAction, message: str
    ) -> None:
        logger.debug("Stream %s audit %s: %s", job_id, action.value, message)


@dataclass(frozen=True)
class AuditEvent:
    """One recorded audit entry."""

    job_id: str
    action: AuditAction
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryStateSynchronizer:
    """Thread-safe StateSynchronizer keeping everything in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current_video: dict[str, str | None] = {}
        self._streaming: dict[str, bool] = {}
        self._events: list[AuditEvent] = []

    def set_current_video(self, job_id: str, filename: str | None) -> None:
        with self._lock:
            self._current_video[job_id] = filename

    def set_streaming(self, job_id: str, streaming: bool) -> None:
        with self._lock:
            self._streaming[job_id] = streaming

    def append_audit_event(
        self, job_id: str, action: AuditAction, message: str
    ) -> None:
        with self._lock:
            self._events.append(AuditEvent(job_id, action, message))

    def current_video(self, job_id: str) -> str | None:
        with self._lock:
            return self._current_video.get(job_id)

    def is_streaming(self, job_id: str) -> bool:
        with self._lock:
            return self._streaming.get(job_id, False)

    def streaming_job_ids(self) -> list[str]:
        with self._lock:
            return [job_id for job_id, live in self._streaming.items() if live]

    def events(self, job_id: str | None = None) -> list[AuditEvent]:
        with self._lock:
            if job_id is None:
                return list(self._events)
            return [event for event in self._events if event.job_id == job_id]
