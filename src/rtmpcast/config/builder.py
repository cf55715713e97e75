"""Configuration builder with explicit layering.

ConfigBuilder builds RtmpcastConfig by composing configuration sources
(file, environment, CLI) with explicit precedence handling.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from rtmpcast.config.env import EnvReader
from rtmpcast.config.models import (
    LoggingConfig,
    RtmpcastConfig,
    StreamingConfig,
    ToolPathsConfig,
)


@dataclass
class ConfigSource:
    """Configuration values from a single source.

    None values indicate "not specified in this source" and will not
    override values from lower-precedence sources.
    """

    # Tool paths
    ffmpeg_path: Path | None = None
    ffprobe_path: Path | None = None

    # Streaming config
    max_concurrent_streams: int | None = None
    default_quality: str | None = None
    max_retries: int | None = None
    retry_base_delay: float | None = None
    retry_max_delay: float | None = None
    segment_pause: float | None = None
    stop_grace_period: float | None = None
    low_memory_threshold_mb: int | None = None
    probe_timeout: int | None = None

    # Logging config
    logging_level: str | None = None
    logging_file: Path | None = None
    logging_format: str | None = None
    logging_include_stderr: bool | None = None
    logging_max_bytes: int | None = None
    logging_backup_count: int | None = None


class ConfigBuilder:
    """Builds RtmpcastConfig by layering ConfigSources with precedence.

    Later sources override earlier ones (for non-None values).

    Example:
        builder = ConfigBuilder()
        builder.apply(source_from_file(file_config))
        builder.apply(source_from_env(reader))
        builder.apply(cli_source)
        config = builder.build()
    """

    def __init__(self) -> None:
        """Initialize the builder with no values set."""
        self._values: dict[str, Any] = {}

    def apply(self, source: ConfigSource) -> None:
        """Apply configuration source, overriding existing values.

        Args:
            source: Configuration source to apply.
        """
        for field_obj in fields(source):
            value = getattr(source, field_obj.name)
            if value is not None:
                self._values[field_obj.name] = value

    def _get(self, key: str, default: Any) -> Any:
        return self._values.get(key, default)

    def build(self) -> RtmpcastConfig:
        """Build the final RtmpcastConfig with defaults for unset values.

        Raises:
            ValueError: If a layered value fails model validation.
        """
        tools = ToolPathsConfig(
            ffmpeg=self._get("ffmpeg_path", None),
            ffprobe=self._get("ffprobe_path", None),
        )

        defaults = StreamingConfig()
        streaming = StreamingConfig(
            max_concurrent_streams=self._get(
                "max_concurrent_streams", defaults.max_concurrent_streams
            ),
            default_quality=self._get("default_quality", defaults.default_quality),
            max_retries=self._get("max_retries", defaults.max_retries),
            retry_base_delay=self._get("retry_base_delay", defaults.retry_base_delay),
            retry_max_delay=self._get("retry_max_delay", defaults.retry_max_delay),
            segment_pause=self._get("segment_pause", defaults.segment_pause),
            stop_grace_period=self._get(
                "stop_grace_period", defaults.stop_grace_period
            ),
            low_memory_threshold_mb=self._get(
                "low_memory_threshold_mb", defaults.low_memory_threshold_mb
            ),
            probe_timeout=self._get("probe_timeout", defaults.probe_timeout),
        )

        logging_config = LoggingConfig(
            level=self._get("logging_level", "info"),
            file=self._get("logging_file", None),
            format=self._get("logging_format", "text"),
            include_stderr=self._get("logging_include_stderr", True),
            max_bytes=self._get("logging_max_bytes", 10_485_760),
            backup_count=self._get("logging_backup_count", 5),
        )

        return RtmpcastConfig(tools=tools, streaming=streaming, logging=logging_config)


def source_from_file(file_config: dict[str, Any]) -> ConfigSource:
    """Create ConfigSource from parsed TOML config file.

    Args:
        file_config: Parsed configuration dictionary from TOML file.

    Returns:
        ConfigSource with values from the config file.
    """
    tools = file_config.get("tools", {})
    streaming = file_config.get("streaming", {})
    logging_conf = file_config.get("logging", {})

    log_file_str = logging_conf.get("file")
    log_file = Path(log_file_str).expanduser() if log_file_str else None

    return ConfigSource(
        # Tool paths
        ffmpeg_path=Path(tools["ffmpeg"]) if tools.get("ffmpeg") else None,
        ffprobe_path=Path(tools["ffprobe"]) if tools.get("ffprobe") else None,
        # Streaming
        max_concurrent_streams=streaming.get("max_concurrent_streams"),
        default_quality=streaming.get("default_quality"),
        max_retries=streaming.get("max_retries"),
        retry_base_delay=streaming.get("retry_base_delay"),
        retry_max_delay=streaming.get("retry_max_delay"),
        segment_pause=streaming.get("segment_pause"),
        stop_grace_period=streaming.get("stop_grace_period"),
        low_memory_threshold_mb=streaming.get("low_memory_threshold_mb"),
        probe_timeout=streaming.get("probe_timeout"),
        # Logging
        logging_level=logging_conf.get("level"),
        logging_file=log_file,
        logging_format=logging_conf.get("format"),
        logging_include_stderr=logging_conf.get("include_stderr"),
        logging_max_bytes=logging_conf.get("max_bytes"),
        logging_backup_count=logging_conf.get("backup_count"),
    )


def source_from_env(reader: EnvReader) -> ConfigSource:
    """Create ConfigSource from environment variables.

    Args:
        reader: EnvReader instance for reading environment variables.

    Returns:
        ConfigSource with values from environment variables.
    """
    return ConfigSource(
        # Tool paths
        ffmpeg_path=reader.get_path("RTMPCAST_FFMPEG_PATH"),
        ffprobe_path=reader.get_path("RTMPCAST_FFPROBE_PATH"),
        # Streaming
        max_concurrent_streams=reader.get_int("RTMPCAST_MAX_STREAMS"),
        default_quality=reader.get_str("RTMPCAST_QUALITY"),
        max_retries=reader.get_int("RTMPCAST_MAX_RETRIES"),
        # Logging
        logging_level=reader.get_str("RTMPCAST_LOG_LEVEL"),
        logging_file=reader.get_path("RTMPCAST_LOG_FILE", must_exist=False),
        logging_format=reader.get_str("RTMPCAST_LOG_FORMAT"),
    )
