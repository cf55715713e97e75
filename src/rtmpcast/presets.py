"""Quality preset table.

Four fixed encoder presets, looked up by QualityLevel. Selection is a pure
table lookup; there is no interpolation between levels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class QualityLevel(Enum):
    """Supported output quality levels."""

    ULTRALOW = "ultralow"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(
        cls, value: QualityLevel | str | None, default: QualityLevel | None = None
    ) -> QualityLevel:
        """Resolve a quality level from user or config input.

        Args:
            value: A QualityLevel, one of its names (case-insensitive),
                or None.
            default: Level to return when value is None.

        Returns:
            The matching QualityLevel.

        Raises:
            ValueError: If value is an unknown name, or None with no default.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            if default is None:
                raise ValueError("quality level is required")
            return default
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(level.value for level in cls)
            raise ValueError(
                f"Invalid quality level {value!r}. Valid options: {valid}"
            ) from None


@dataclass(frozen=True)
class QualityPreset:
    """Encoder parameters for one quality level."""

    width: int
    height: int
    video_bitrate: str
    max_bitrate: str
    buffer_size: str
    speed_preset: str
    """x264 speed preset label (e.g. "superfast")."""
    audio_bitrate: str
    audio_sample_rate: int
    threads: int
    crf: int
    """Constant rate factor passed to x264."""

    @property
    def resolution(self) -> str:
        """Resolution in ffmpeg filter notation, e.g. "1280:720"."""
        return f"{self.width}:{self.height}"


QUALITY_PRESETS: dict[QualityLevel, QualityPreset] = {
    QualityLevel.ULTRALOW: QualityPreset(
        width=854,
        height=480,
        video_bitrate="1000k",
        max_bitrate="1500k",
        buffer_size="2000k",
        speed_preset="ultrafast",
        audio_bitrate="96k",
        audio_sample_rate=44100,
        threads=2,
        crf=28,
    ),
    QualityLevel.LOW: QualityPreset(
        width=1280,
        height=720,
        video_bitrate="2500k",
        max_bitrate="3000k",
        buffer_size="5000k",
        speed_preset="superfast",
        audio_bitrate="128k",
        audio_sample_rate=44100,
        threads=2,
        crf=26,
    ),
    QualityLevel.MEDIUM: QualityPreset(
        width=1920,
        height=1080,
        video_bitrate="4000k",
        max_bitrate="5000k",
        buffer_size="8000k",
        speed_preset="superfast",
        audio_bitrate="128k",
        audio_sample_rate=44100,
        threads=4,
        crf=23,
    ),
    QualityLevel.HIGH: QualityPreset(
        width=1920,
        height=1080,
        video_bitrate="5000k",
        max_bitrate="6000k",
        buffer_size="10000k",
        speed_preset="superfast",
        audio_bitrate="128k",
        audio_sample_rate=44100,
        threads=4,
        crf=21,
    ),
}


def get_preset(level: QualityLevel) -> QualityPreset:
    """Return the preset for a quality level."""
    return QUALITY_PRESETS[level]
