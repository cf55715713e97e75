"""Admission control for new stream jobs.

Checks run before a job's supervisor is started. The registry's own
insert-if-absent (with capacity) remains the final arbiter when two
admissions race; this controller only turns away requests that would
certainly fail.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import psutil

from rtmpcast.exceptions import AdmissionDenied, AdmissionReason
from rtmpcast.registry import JobRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 2
DEFAULT_LOW_MEMORY_MB = 256


def get_available_memory_mb() -> int | None:
    """Return available host memory in MiB, or None if it cannot be read."""
    try:
        return int(psutil.virtual_memory().available // (1024 * 1024))
    except (OSError, RuntimeError) as e:
        logger.warning("Could not read available memory: %s", e)
        return None


class AdmissionController:
    """Gatekeeper deciding whether a new job may start."""

    def __init__(
        self,
        registry: JobRegistry,
        encoder_available: Callable[[], bool],
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        low_memory_mb: int = DEFAULT_LOW_MEMORY_MB,
        memory_probe: Callable[[], int | None] = get_available_memory_mb,
    ) -> None:
        """Initialize the controller.

        Args:
            registry: Registry of running jobs.
            encoder_available: Returns True if ffmpeg can be invoked.
            max_concurrent: Maximum number of simultaneously running jobs.
            low_memory_mb: Free-memory level below which a warning is logged.
            memory_probe: Returns available memory in MiB.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._registry = registry
        self._encoder_available = encoder_available
        self._max_concurrent = max_concurrent
        self._low_memory_mb = low_memory_mb
        self._memory_probe = memory_probe

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def check(self, job_id: str) -> None:
        """Run all admission checks.

        Raises:
            AdmissionDenied: If the job is already running, the concurrency
                ceiling is reached, or ffmpeg is unavailable.
        """
        if job_id in self._registry:
            logger.info("Stream %s is already running", job_id)
            raise AdmissionDenied(job_id, AdmissionReason.DUPLICATE)

        active = len(self._registry)
        if active >= self._max_concurrent:
            logger.warning(
                "Refusing stream %s: %d/%d streams active",
                job_id,
                active,
                self._max_concurrent,
            )
            raise AdmissionDenied(job_id, AdmissionReason.CAPACITY)

        if not self._encoder_available():
            logger.error("ffmpeg is not installed or not in PATH")
            raise AdmissionDenied(job_id, AdmissionReason.ENCODER_MISSING)

        available = self._memory_probe()
        if available is not None and available < self._low_memory_mb:
            logger.warning("Low memory warning: %dMB available", available)

    def try_admit(self, job_id: str) -> bool:
        """Return True if the job passes every admission check."""
        try:
            self.check(job_id)
        except AdmissionDenied:
            return False
        return True
