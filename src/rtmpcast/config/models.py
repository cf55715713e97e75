"""Configuration data models for rtmpcast.

This module defines dataclasses for all configuration sections.
Each section validates its own values in __post_init__.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rtmpcast.presets import QualityLevel


@dataclass
class ToolPathsConfig:
    """Configuration for external tool paths.

    All paths are optional. If not specified, tools are looked up in PATH.
    """

    ffmpeg: Path | None = None
    ffprobe: Path | None = None


@dataclass
class StreamingConfig:
    """Configuration for stream supervision."""

    # Maximum number of simultaneously running jobs
    max_concurrent_streams: int = 2

    # Process-wide quality used by jobs without an override
    default_quality: QualityLevel = QualityLevel.HIGH

    # Consecutive failures of one segment before a job gives up
    max_retries: int = 3

    # Backoff before retry n is retry_base_delay * 2**(n-1), capped
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0

    # Pause between successful segments (seconds)
    segment_pause: float = 0.5

    # Time a stopped ffmpeg gets to quit before it is killed (seconds)
    stop_grace_period: float = 3.0

    # Available memory below which admission logs a warning
    low_memory_threshold_mb: int = 256

    # ffprobe timeout (seconds)
    probe_timeout: int = 30

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.default_quality = QualityLevel.parse(self.default_quality)
        if self.max_concurrent_streams < 1:
            raise ValueError(
                "max_concurrent_streams must be at least 1, "
                f"got {self.max_concurrent_streams}"
            )
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ValueError("retry delays must not be negative")
        if self.segment_pause < 0:
            raise ValueError(
                f"segment_pause must not be negative, got {self.segment_pause}"
            )
        if self.stop_grace_period <= 0:
            raise ValueError(
                f"stop_grace_period must be positive, got {self.stop_grace_period}"
            )
        if self.probe_timeout < 1:
            raise ValueError(
                f"probe_timeout must be at least 1, got {self.probe_timeout}"
            )


@dataclass
class LoggingConfig:
    """Configuration for logging output."""

    # Log level: debug, info, warning, error
    level: str = "info"

    # Log file path (None = stderr only)
    file: Path | None = None

    # Log format: text or json
    format: str = "text"

    # Also log to stderr when file is set
    include_stderr: bool = True

    # Rotation threshold in bytes (default 10MB)
    max_bytes: int = 10_485_760

    # Number of rotated files to keep
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.lower() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.lower() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )


@dataclass
class RtmpcastConfig:
    """Main configuration container for rtmpcast.

    Aggregates all configuration sections.
    """

    tools: ToolPathsConfig = field(default_factory=ToolPathsConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
