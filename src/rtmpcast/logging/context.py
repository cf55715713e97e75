"""Stream context for structured logging.

Each supervisor thread runs inside stream_context(job_id); the filter below
copies the job id and the video being played onto every log record so that
interleaved output from concurrent streams stays attributable.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

_job_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "job_id", default=None
)
_video: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "video", default=None
)


@contextmanager
def stream_context(job_id: str) -> Generator[None, None, None]:
    """Context manager tagging log records with a job id.

    Example:
        with stream_context("abc123"):
            logger.info("Starting")  # -> "[S:abc123] ..."
    """
    job_token = _job_id.set(job_id)
    video_token = _video.set(None)
    try:
        yield
    finally:
        _video.reset(video_token)
        _job_id.reset(job_token)


def set_current_video(filename: str | None) -> None:
    """Set the video tag for the current stream context."""
    _video.set(filename)


def get_stream_context() -> tuple[str | None, str | None]:
    """Get current stream context.

    Returns:
        Tuple of (job_id, video), either may be None.
    """
    return _job_id.get(), _video.get()


class StreamContextFilter(logging.Filter):
    """Logging filter that injects stream context into log records.

    Adds job_id and video attributes for JSON output and a compact
    stream_tag such as "[S:abc123:intro.mp4] " for text output.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        job_id, video = get_stream_context()
        record.job_id = job_id
        record.video = video

        if job_id:
            if video:
                record.stream_tag = f"[S:{job_id}:{video}] "
            else:
                record.stream_tag = f"[S:{job_id}] "
        else:
            record.stream_tag = ""

        return True  # Never filter out records
