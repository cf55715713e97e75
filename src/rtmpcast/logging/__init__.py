"""Structured logging for rtmpcast.

Every record logged on a supervisor thread is tagged with its job id and
the video being played, in text output and as JSON fields.
"""

from rtmpcast.logging.config import configure_logging
from rtmpcast.logging.context import (
    StreamContextFilter,
    get_stream_context,
    set_current_video,
    stream_context,
)
from rtmpcast.logging.handlers import StreamJSONFormatter, StreamTextFormatter

__all__ = [
    "StreamContextFilter",
    "StreamJSONFormatter",
    "StreamTextFormatter",
    "configure_logging",
    "get_stream_context",
    "set_current_video",
    "stream_context",
]
