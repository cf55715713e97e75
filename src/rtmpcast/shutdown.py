"""Graceful stop of running stream jobs.

A stop is requested by removing the job's registry record; the owning
supervisor observes the absence and winds down. The coordinator then asks
the current ffmpeg process to quit by writing "q" to its stdin and kills it
if it is still alive after the grace period.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - needed for TimeoutExpired

from rtmpcast.registry import JobRegistry, ProcessHandle

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 3.0

# ffmpeg's interactive "quit" command
SOFT_STOP_COMMAND = "q"


def send_soft_stop(process: ProcessHandle) -> bool:
    """Ask ffmpeg to quit cleanly via its stdin.

    Returns:
        True if the command was written.
    """
    if process.stdin is None:
        return False
    try:
        process.stdin.write(SOFT_STOP_COMMAND)
        process.stdin.flush()
    except (BrokenPipeError, OSError, ValueError) as e:
        # Process already exited or stdin already closed
        logger.debug("Soft stop to PID %s failed: %s", process.pid, e)
        return False
    return True


def terminate_process(process: ProcessHandle, grace_period: float) -> int | None:
    """Stop a process, escalating to kill after the grace period.

    Args:
        process: Process to stop.
        grace_period: Seconds to wait after the soft stop.

    Returns:
        The process return code, or None if it could not be reaped.
    """
    if process.poll() is not None:
        return process.returncode

    send_soft_stop(process)
    try:
        return process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.warning(
            "PID %s did not exit within %.1fs, killing", process.pid, grace_period
        )

    try:
        process.kill()
    except OSError as e:
        logger.debug("Kill of PID %s failed: %s", process.pid, e)
    try:
        return process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.error("PID %s survived kill", process.pid)
        return None


class ShutdownCoordinator:
    """Stops jobs on request, safe to call concurrently with supervisors."""

    def __init__(
        self, registry: JobRegistry, grace_period: float = DEFAULT_GRACE_PERIOD
    ) -> None:
        self._registry = registry
        self._grace_period = grace_period

    @property
    def grace_period(self) -> float:
        return self._grace_period

    def stop(self, job_id: str) -> bool:
        """Stop a job.

        Removing the record comes first so the supervisor, when its process
        exits, sees the stop instead of advancing to the next segment. The
        call returns once the process has exited or been killed.

        Returns:
            True if a running job was stopped, False if there was none.
        """
        record = self._registry.remove(job_id)
        if record is None:
            logger.debug("Stop requested for %s, which is not running", job_id)
            return False

        process = record.process
        if process is None:
            logger.info("Stream %s stopped before its process started", job_id)
            return True

        logger.info("Stopping stream %s (PID %s)", job_id, process.pid)
        returncode = terminate_process(process, self._grace_period)
        logger.info("Stream %s stopped (exit code %s)", job_id, returncode)
        return True
