"""Log formatters for stream output.

Both formatters expect StreamContextFilter to have run first so that every
record carries job_id, video and stream_tag.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s %(stream_tag)s%(name)s: %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Record attributes promoted to top-level JSON keys when set. pid is passed
# by the supervisor as extra={"pid": ...} once an ffmpeg process is attached.
STREAM_FIELDS = ("job_id", "video", "pid")


class StreamTextFormatter(logging.Formatter):
    """One line per record, prefixed with the stream tag."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        # Records from loggers without the filter (third-party handlers
        # sharing this formatter) have no tag
        if not hasattr(record, "stream_tag"):
            record.stream_tag = ""
        return super().format(record)


class StreamJSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp (ISO-8601 UTC), level, logger, message, then job_id,
    video and pid when known, and exception when the record carries one.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STREAM_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)
