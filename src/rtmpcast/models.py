"""Job data model.

A JobDescriptor is handed to the stream manager fully resolved; it is
immutable for the lifetime of the job.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from rtmpcast.presets import QualityLevel


class PlaylistMode(Enum):
    """Playlist traversal policy.

    Values match the mode names persisted by the stream store.
    """

    PLAY_ONCE = "ONCE"
    LOOP = "LOOP"
    SHUFFLE = "SHUFFLE"
    SHUFFLE_LOOP = "SHUFFLE_LOOP"

    @property
    def loops(self) -> bool:
        """True if traversal restarts after each pass."""
        return self in (PlaylistMode.LOOP, PlaylistMode.SHUFFLE_LOOP)

    @property
    def shuffles(self) -> bool:
        """True if the playlist order is randomized."""
        return self in (PlaylistMode.SHUFFLE, PlaylistMode.SHUFFLE_LOOP)

    @classmethod
    def parse(cls, value: PlaylistMode | str) -> PlaylistMode:
        """Resolve a mode from its value or member name (case-insensitive).

        Raises:
            ValueError: If the name is not a known mode.
        """
        if isinstance(value, cls):
            return value
        normalized = value.strip().upper().replace("-", "_")
        for mode in cls:
            if normalized in (mode.value, mode.name):
                return mode
        valid = ", ".join(mode.name for mode in cls)
        raise ValueError(f"Invalid playlist mode {value!r}. Valid options: {valid}")


@dataclass(frozen=True)
class VideoReference:
    """One playlist entry."""

    path: Path
    """Absolute path to the video file."""

    filename: str
    """Display name persisted as the stream's current video."""

    def __post_init__(self) -> None:
        """Validate the reference."""
        if self.path == Path("") or not self.filename:
            raise ValueError("video path and filename must not be empty")

    @classmethod
    def from_path(cls, path: Path | str) -> VideoReference:
        """Build a reference whose display name is the file's basename."""
        path = Path(path)
        return cls(path=path, filename=path.name)


@dataclass(frozen=True)
class JobDescriptor:
    """Everything needed to run one stream."""

    job_id: str
    rtmp_url: str
    videos: tuple[VideoReference, ...]
    mode: PlaylistMode = PlaylistMode.LOOP
    quality: QualityLevel | None = None
    """Per-job override; None follows the process-wide current quality."""

    def __post_init__(self) -> None:
        """Normalize sequence and enum fields."""
        if not isinstance(self.videos, tuple):
            object.__setattr__(self, "videos", tuple(self.videos))
        if not isinstance(self.mode, PlaylistMode):
            object.__setattr__(self, "mode", PlaylistMode.parse(self.mode))
        if self.quality is not None and not isinstance(self.quality, QualityLevel):
            object.__setattr__(self, "quality", QualityLevel.parse(self.quality))
        if not self.job_id:
            raise ValueError("job_id must not be empty")
        if not self.rtmp_url:
            raise ValueError("rtmp_url must not be empty")
