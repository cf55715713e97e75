"""Encode strategy probing.

Decides whether a file can be relayed to the RTMP target as-is (stream
copy) or has to be transcoded. Any probe problem resolves to "transcode".
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - needed for TimeoutExpired
from dataclasses import dataclass
from pathlib import Path

from rtmpcast.exceptions import RtmpcastError
from rtmpcast.tools import run_command

logger = logging.getLogger(__name__)

# Codec the RTMP target accepts without re-encoding
PASSTHROUGH_CODEC = "h264"
# Widest frame the RTMP target accepts without re-encoding
PASSTHROUGH_MAX_WIDTH = 1920

DEFAULT_PROBE_TIMEOUT = 30


class ProbeFailure(RtmpcastError):
    """Raised internally when ffprobe output cannot be used."""


@dataclass(frozen=True)
class VideoStreamInfo:
    """Codec and width of a file's primary video stream."""

    codec: str
    width: int


def parse_probe_output(output: str) -> VideoStreamInfo:
    """Parse ffprobe's "codec,width" CSV line.

    Args:
        output: stdout of the probe command.

    Returns:
        Parsed stream info.

    Raises:
        ProbeFailure: If the output is empty or malformed.
    """
    line = output.strip().splitlines()[0].strip() if output.strip() else ""
    if not line:
        raise ProbeFailure("no video stream reported")

    parts = [part.strip() for part in line.split(",")]
    if len(parts) < 2 or not parts[0]:
        raise ProbeFailure(f"unexpected probe output: {line!r}")

    try:
        width = int(parts[1])
    except ValueError:
        raise ProbeFailure(f"invalid width in probe output: {line!r}") from None

    return VideoStreamInfo(codec=parts[0].lower(), width=width)


def is_passthrough_compatible(
    info: VideoStreamInfo,
    codec: str = PASSTHROUGH_CODEC,
    max_width: int = PASSTHROUGH_MAX_WIDTH,
) -> bool:
    """Check a probed stream against the RTMP delivery constraints."""
    return info.codec == codec and 0 < info.width <= max_width


class EncodeStrategyProber:
    """ffprobe-backed passthrough eligibility check."""

    def __init__(
        self,
        ffprobe_path: str = "ffprobe",
        timeout: int = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        """Initialize the prober.

        Args:
            ffprobe_path: ffprobe executable to invoke.
            timeout: Seconds before a probe is abandoned.
        """
        self._ffprobe_path = ffprobe_path
        self._timeout = timeout

    def build_command(self, path: Path) -> list[str]:
        """Return the ffprobe argument vector for a codec/width query."""
        return [
            self._ffprobe_path,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=codec_name,width",
            "-of",
            "csv=p=0",
            str(path),
        ]

    def probe(self, path: Path) -> VideoStreamInfo:
        """Read codec and width of the primary video stream.

        Raises:
            ProbeFailure: If ffprobe fails or its output is unusable.
        """
        try:
            stdout, stderr, rc = run_command(
                self.build_command(path), timeout=self._timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeFailure(f"ffprobe timed out after {e.timeout}s") from e
        except OSError as e:
            raise ProbeFailure(f"ffprobe could not be started: {e}") from e

        if rc != 0:
            raise ProbeFailure(f"ffprobe exited with {rc}: {stderr.strip()}")
        return parse_probe_output(stdout)

    def can_passthrough(self, path: Path) -> bool:
        """Return True if the file can be stream-copied to the RTMP target.

        Never raises; probe failures fall back to transcoding.
        """
        try:
            info = self.probe(path)
        except ProbeFailure as e:
            logger.warning("Probe failed for %s, transcoding: %s", path.name, e)
            return False

        allowed = is_passthrough_compatible(info)
        logger.debug(
            "Probe %s: codec=%s width=%d passthrough=%s",
            path.name,
            info.codec,
            info.width,
            allowed,
        )
        return allowed
