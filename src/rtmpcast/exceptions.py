"""Exception types for the stream supervisor.

Callers of the stream manager only ever see AdmissionDenied and
EmptyPlaylistError synchronously. Failures that happen once a job is
running are recovered or recorded by the supervisor thread and surface
through its result, never as exceptions to the caller.
"""

from __future__ import annotations

from enum import Enum


class RtmpcastError(Exception):
    """Base exception for stream supervisor errors.

    All rtmpcast-specific exceptions inherit from this class, allowing
    callers to catch them with a single except clause if desired.
    """


class AdmissionReason(Enum):
    """Why a job was refused admission."""

    DUPLICATE = "duplicate"
    CAPACITY = "capacity"
    ENCODER_MISSING = "encoder_missing"


class AdmissionDenied(RtmpcastError):
    """Raised when a job cannot be started.

    Attributes:
        job_id: The job that was refused.
        reason: Which admission check failed.
    """

    _MESSAGES = {
        AdmissionReason.DUPLICATE: "is already running",
        AdmissionReason.CAPACITY: "exceeds the concurrent stream limit",
        AdmissionReason.ENCODER_MISSING: "cannot start: ffmpeg is not available",
    }

    def __init__(self, job_id: str, reason: AdmissionReason) -> None:
        """Initialize the exception.

        Args:
            job_id: The job that was refused.
            reason: Which admission check failed.
        """
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Stream {job_id} {self._MESSAGES[reason]}")


class EmptyPlaylistError(RtmpcastError, ValueError):
    """Raised when a job is started with no videos."""


class PermanentFailure(RtmpcastError):
    """Terminal failure of a job after exhausting its retries.

    Carried in SupervisorResult.error rather than raised across threads.

    Attributes:
        job_id: The failed job.
        attempts: Consecutive failed attempts of the last segment.
        last_error: Last error line observed on ffmpeg's stderr, if any.
    """

    def __init__(self, job_id: str, attempts: int, last_error: str | None) -> None:
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"Stream {job_id} failed after {attempts} attempt(s){detail}"
        )
