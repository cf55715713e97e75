"""Tests for configuration models, layering and loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from rtmpcast.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from rtmpcast.config.env import EnvReader
from rtmpcast.config.loader import get_config, load_config_file
from rtmpcast.config.models import LoggingConfig, StreamingConfig
from rtmpcast.presets import QualityLevel


class TestStreamingConfig:
    """Tests for StreamingConfig validation."""

    def test_defaults(self) -> None:
        """Defaults match the documented supervisor behavior."""
        config = StreamingConfig()
        assert config.max_concurrent_streams == 2
        assert config.default_quality is QualityLevel.HIGH
        assert config.max_retries == 3
        assert config.retry_base_delay == 2.0
        assert config.retry_max_delay == 60.0
        assert config.segment_pause == 0.5
        assert config.stop_grace_period == 3.0
        assert config.low_memory_threshold_mb == 256
        assert config.probe_timeout == 30

    def test_quality_name_is_coerced(self) -> None:
        assert StreamingConfig(default_quality="LOW").default_quality is QualityLevel.LOW

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_concurrent_streams": 0},
            {"max_retries": 0},
            {"default_quality": "best"},
            {"retry_base_delay": -1.0},
            {"segment_pause": -0.1},
            {"stop_grace_period": 0},
            {"probe_timeout": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs) -> None:
        with pytest.raises(ValueError):
            StreamingConfig(**kwargs)


class TestLoggingConfig:
    """Tests for LoggingConfig validation."""

    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="level must be one of"):
            LoggingConfig(level="verbose")

    def test_rejects_unknown_format(self) -> None:
        with pytest.raises(ValueError, match="format must be one of"):
            LoggingConfig(format="xml")


class TestEnvReader:
    """Tests for EnvReader."""

    def test_reads_typed_values(self) -> None:
        reader = EnvReader(env={"N": "4", "S": "x"})
        assert reader.get_int("N") == 4
        assert reader.get_str("S") == "x"

    def test_invalid_int_warns_and_uses_default(self, caplog) -> None:
        """Unparsable values are logged and ignored."""
        reader = EnvReader(env={"N": "many"})
        with caplog.at_level(logging.WARNING, logger="rtmpcast.config.env"):
            assert reader.get_int("N", 2) == 2
        assert "Invalid integer value for N" in caplog.text

    def test_missing_path_uses_default(self, temp_dir: Path) -> None:
        reader = EnvReader(env={"P": str(temp_dir / "nope")})
        assert reader.get_path("P") is None
        assert reader.get_path("P", must_exist=False) == temp_dir / "nope"


class TestConfigBuilder:
    """Tests for ConfigBuilder layering."""

    def test_later_sources_win(self) -> None:
        """Non-None values override earlier layers; None keeps them."""
        builder = ConfigBuilder()
        builder.apply(ConfigSource(max_concurrent_streams=4, max_retries=5))
        builder.apply(ConfigSource(max_concurrent_streams=6))

        config = builder.build()

        assert config.streaming.max_concurrent_streams == 6
        assert config.streaming.max_retries == 5

    def test_file_source_reads_sections(self) -> None:
        source = source_from_file(
            {
                "tools": {"ffmpeg": "/opt/ffmpeg"},
                "streaming": {"default_quality": "medium", "segment_pause": 1.0},
                "logging": {"level": "debug", "format": "json"},
            }
        )
        assert source.ffmpeg_path == Path("/opt/ffmpeg")
        assert source.default_quality == "medium"
        assert source.segment_pause == 1.0
        assert source.logging_level == "debug"
        assert source.logging_format == "json"

    def test_env_source_reads_variables(self) -> None:
        reader = EnvReader(
            env={
                "RTMPCAST_MAX_STREAMS": "5",
                "RTMPCAST_QUALITY": "ultralow",
                "RTMPCAST_MAX_RETRIES": "4",
                "RTMPCAST_LOG_LEVEL": "warning",
            }
        )
        source = source_from_env(reader)
        assert source.max_concurrent_streams == 5
        assert source.default_quality == "ultralow"
        assert source.max_retries == 4
        assert source.logging_level == "warning"
        assert source.ffmpeg_path is None


class TestGetConfig:
    """Tests for get_config precedence."""

    def test_defaults_without_file(self, temp_dir: Path) -> None:
        config = get_config(
            config_path=temp_dir / "missing.toml", env_reader=EnvReader(env={})
        )
        assert config.streaming.max_concurrent_streams == 2
        assert config.logging.level == "info"
        assert config.tools.ffmpeg is None

    def test_precedence_file_env_cli(self, temp_dir: Path) -> None:
        """CLI beats environment, which beats the config file."""
        path = temp_dir / "config.toml"
        path.write_text(
            "[streaming]\n"
            "max_concurrent_streams = 3\n"
            'default_quality = "low"\n'
            "max_retries = 5\n"
            "\n[logging]\n"
            'level = "debug"\n'
        )
        reader = EnvReader(env={"RTMPCAST_MAX_STREAMS": "4", "RTMPCAST_QUALITY": "medium"})

        config = get_config(
            config_path=path,
            default_quality="ultralow",
            env_reader=reader,
        )

        assert config.streaming.max_concurrent_streams == 4
        assert config.streaming.default_quality is QualityLevel.ULTRALOW
        assert config.streaming.max_retries == 5
        assert config.logging.level == "debug"

    def test_invalid_value_raises(self, temp_dir: Path) -> None:
        path = temp_dir / "config.toml"
        path.write_text("[streaming]\nmax_concurrent_streams = 0\n")
        with pytest.raises(ValueError):
            get_config(config_path=path, env_reader=EnvReader(env={}))


class TestLoadConfigFile:
    """Tests for load_config_file."""

    def test_missing_file_is_empty(self, temp_dir: Path) -> None:
        assert load_config_file(temp_dir / "none.toml") == {}

    def test_unparsable_file_is_empty(self, temp_dir: Path, caplog) -> None:
        """Broken TOML is logged and treated as absent."""
        path = temp_dir / "config.toml"
        path.write_text("[streaming\nmax = ")
        with caplog.at_level(logging.WARNING, logger="rtmpcast.config.loader"):
            assert load_config_file(path) == {}
        assert "Failed to load config file" in caplog.text

    def test_cached_until_modified(self, temp_dir: Path) -> None:
        """A changed mtime forces a reload."""
        import os

        path = temp_dir / "config.toml"
        path.write_text("[streaming]\nmax_retries = 4\n")
        first = load_config_file(path)
        assert load_config_file(path) is first

        path.write_text("[streaming]\nmax_retries = 6\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert load_config_file(path)["streaming"]["max_retries"] == 6
