"""rtmpcast - supervise ffmpeg processes that relay video playlists to RTMP."""

from rtmpcast.exceptions import (
    AdmissionDenied,
    AdmissionReason,
    EmptyPlaylistError,
    PermanentFailure,
    RtmpcastError,
)
from rtmpcast.manager import StatusReport, StreamManager
from rtmpcast.models import JobDescriptor, PlaylistMode, VideoReference
from rtmpcast.presets import QUALITY_PRESETS, QualityLevel, QualityPreset, get_preset

__version__ = "0.1.0"

__all__ = [
    "QUALITY_PRESETS",
    "AdmissionDenied",
    "AdmissionReason",
    "EmptyPlaylistError",
    "JobDescriptor",
    "PermanentFailure",
    "PlaylistMode",
    "QualityLevel",
    "QualityPreset",
    "RtmpcastError",
    "StatusReport",
    "StreamManager",
    "VideoReference",
    "get_preset",
]
