"""Root logger setup for rtmpcast."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

from rtmpcast.logging.context import StreamContextFilter
from rtmpcast.logging.handlers import StreamJSONFormatter, StreamTextFormatter

if TYPE_CHECKING:
    from rtmpcast.config.models import LoggingConfig

logger = logging.getLogger(__name__)

# Attribute marking handlers installed by configure_logging
_OWNED = "_rtmpcast_owned"


def _open_log_file(config: LoggingConfig) -> RotatingFileHandler:
    """Open the rotating log file, creating its directory.

    Raises:
        OSError: If the directory or file cannot be created.
    """
    path = config.file.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )


def configure_logging(config: LoggingConfig) -> None:
    """Install rtmpcast's handlers on the root logger.

    Handlers from an earlier call are replaced; handlers added by anything
    else (an embedding API server, pytest) stay in place. When no log file
    can be written, output goes to stderr even if include_stderr is False.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _OWNED, False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = []
    file_error: OSError | None = None
    if config.file is not None:
        try:
            handlers.append(_open_log_file(config))
        except OSError as e:
            file_error = e
    if config.include_stderr or not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    if config.format.lower() == "json":
        formatter: logging.Formatter = StreamJSONFormatter()
    else:
        formatter = StreamTextFormatter()
    context_filter = StreamContextFilter()

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        setattr(handler, _OWNED, True)
        root.addHandler(handler)
    root.setLevel(config.level.upper())

    if file_error is not None:
        logger.warning(
            "Cannot write log file %s, logging to stderr: %s", config.file, file_error
        )
