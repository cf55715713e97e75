"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (passed directly to functions)
2. Environment variables (RTMPCAST_*)
3. Config file (~/.rtmpcast/config.toml)
4. Default values

Environment variables:
- RTMPCAST_FFMPEG_PATH: Path to ffmpeg executable
- RTMPCAST_FFPROBE_PATH: Path to ffprobe executable
- RTMPCAST_MAX_STREAMS: Maximum concurrent streams
- RTMPCAST_QUALITY: Default quality (ultralow, low, medium, high)
- RTMPCAST_MAX_RETRIES: Consecutive failures before a stream gives up
- RTMPCAST_LOG_LEVEL, RTMPCAST_LOG_FILE, RTMPCAST_LOG_FORMAT: Logging
- RTMPCAST_CONFIG_PATH: Path to config file (overrides default location)
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from pathlib import Path
from typing import Any

from rtmpcast.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from rtmpcast.config.env import EnvReader
from rtmpcast.config.models import RtmpcastConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".rtmpcast"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

# Cache for loaded config files (path -> (parsed dict, mtime))
_config_cache: dict[Path, tuple[dict[str, Any], float]] = {}
_config_cache_lock = threading.Lock()


def get_default_config_path() -> Path:
    """Get the config file path, honoring RTMPCAST_CONFIG_PATH."""
    env_path = os.environ.get("RTMPCAST_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}
    try:
        with path.open("rb") as f:
            config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Failed to load config file %s: %s", path, e)
        return {}
    logger.debug("Loaded config from %s", path)
    return config


def load_config_file(path: Path | None = None) -> dict[str, Any]:
    """Load configuration from TOML file.

    Results are cached with mtime-based invalidation, so an edited file is
    re-read on the next call. Thread-safe.

    Args:
        path: Path to config file. If None, uses default location.

    Returns:
        Parsed configuration dict. Empty dict if the file doesn't exist or
        cannot be parsed.
    """
    if path is None:
        path = get_default_config_path()

    try:
        current_mtime = path.stat().st_mtime
    except FileNotFoundError:
        current_mtime = 0.0

    with _config_cache_lock:
        cached = _config_cache.get(path)
        if cached is not None and cached[1] == current_mtime:
            return cached[0]

        result = _read_toml(path)
        _config_cache[path] = (result, current_mtime)
        return result


def clear_config_cache() -> None:
    """Clear the config file cache. Primarily useful for testing."""
    with _config_cache_lock:
        _config_cache.clear()


def get_config(
    config_path: Path | None = None,
    # CLI overrides (highest precedence)
    ffmpeg_path: Path | None = None,
    max_concurrent_streams: int | None = None,
    default_quality: str | None = None,
    log_level: str | None = None,
    log_file: Path | None = None,
    log_format: str | None = None,
    # Optional dependency injection for testing
    env_reader: EnvReader | None = None,
) -> RtmpcastConfig:
    """Get rtmpcast configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides RTMPCAST_CONFIG_PATH).
        ffmpeg_path: CLI override for ffmpeg path.
        max_concurrent_streams: CLI override for the stream ceiling.
        default_quality: CLI override for the default quality.
        log_level: CLI override for the log level.
        log_file: CLI override for the log file.
        log_format: CLI override for the log format.
        env_reader: Optional EnvReader for testing (uses os.environ if None).

    Returns:
        RtmpcastConfig with merged configuration.

    Raises:
        ValueError: If the merged values fail validation.
    """
    reader = env_reader or EnvReader()

    file_config = load_config_file(config_path)

    cli_source = ConfigSource(
        ffmpeg_path=ffmpeg_path,
        max_concurrent_streams=max_concurrent_streams,
        default_quality=default_quality,
        logging_level=log_level,
        logging_file=log_file,
        logging_format=log_format,
    )

    # Build with precedence: file < env < cli
    builder = ConfigBuilder()
    builder.apply(source_from_file(file_config))
    builder.apply(source_from_env(reader))
    builder.apply(cli_source)
    return builder.build()
