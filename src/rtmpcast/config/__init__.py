"""Configuration for rtmpcast.

Usage:
    from rtmpcast.config import get_config

    config = get_config()
    print(config.streaming.max_concurrent_streams)
"""

from rtmpcast.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from rtmpcast.config.env import EnvReader
from rtmpcast.config.loader import (
    DEFAULT_CONFIG_FILE,
    clear_config_cache,
    get_config,
    get_default_config_path,
    load_config_file,
)
from rtmpcast.config.models import (
    LoggingConfig,
    RtmpcastConfig,
    StreamingConfig,
    ToolPathsConfig,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ConfigBuilder",
    "ConfigSource",
    "EnvReader",
    "LoggingConfig",
    "RtmpcastConfig",
    "StreamingConfig",
    "ToolPathsConfig",
    "clear_config_cache",
    "get_config",
    "get_default_config_path",
    "load_config_file",
    "source_from_env",
    "source_from_file",
]
