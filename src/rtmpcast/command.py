"""FFmpeg command building for RTMP delivery.

Every ffmpeg argument vector used by the supervisor is assembled here, in
one of two fixed templates: passthrough (stream copy) or transcode to a
quality preset. Flag order is stable so callers and tests can assert on it.
"""

from __future__ import annotations

from pathlib import Path

from rtmpcast.presets import QualityPreset

# Keyframe interval in frames; with a fixed 30 fps output this is 2 seconds
GOP_SIZE = 60
OUTPUT_FPS = 30
MUXING_QUEUE_SIZE = 1024
RTMP_BUFFER_MS = 4096


def build_scale_filter(preset: QualityPreset) -> str:
    """Scale into the preset frame, letterboxing to keep the aspect ratio."""
    w, h = preset.width, preset.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,"
        "format=yuv420p"
    )


def build_passthrough_args(input_path: Path, rtmp_url: str) -> list[str]:
    """Arguments relaying both tracks unchanged."""
    return [
        "-re",
        "-i",
        str(input_path),
        "-c",
        "copy",
        "-flvflags",
        "no_duration_filesize",
        "-f",
        "flv",
        rtmp_url,
    ]


def build_transcode_args(
    input_path: Path, rtmp_url: str, preset: QualityPreset
) -> list[str]:
    """Arguments re-encoding to H.264/AAC at the preset's parameters."""
    args = ["-re", "-i", str(input_path)]

    # Video
    args.extend(["-vf", build_scale_filter(preset)])
    args.extend(
        [
            "-c:v",
            "libx264",
            "-preset",
            preset.speed_preset,
            "-tune",
            "zerolatency",
            "-profile:v",
            "baseline",
            "-crf",
            str(preset.crf),
            "-b:v",
            preset.video_bitrate,
            "-maxrate",
            preset.max_bitrate,
            "-bufsize",
            preset.buffer_size,
        ]
    )

    # Predictable keyframes: fixed GOP, no scene-cut keyframes
    args.extend(
        [
            "-g",
            str(GOP_SIZE),
            "-keyint_min",
            str(GOP_SIZE),
            "-sc_threshold",
            "0",
            "-r",
            str(OUTPUT_FPS),
        ]
    )

    # Audio
    args.extend(
        [
            "-c:a",
            "aac",
            "-b:a",
            preset.audio_bitrate,
            "-ar",
            str(preset.audio_sample_rate),
            "-ac",
            "2",
        ]
    )

    # Muxing and timestamps
    args.extend(
        [
            "-threads",
            str(preset.threads),
            "-max_muxing_queue_size",
            str(MUXING_QUEUE_SIZE),
            "-fflags",
            "+genpts",
            "-avoid_negative_ts",
            "make_zero",
        ]
    )

    # RTMP output
    args.extend(
        [
            "-rtmp_buffer",
            str(RTMP_BUFFER_MS),
            "-rtmp_live",
            "live",
            "-f",
            "flv",
            rtmp_url,
        ]
    )
    return args


def build_stream_command(
    input_path: Path,
    rtmp_url: str,
    preset: QualityPreset,
    passthrough: bool,
    ffmpeg_path: str = "ffmpeg",
) -> list[str]:
    """Build the full ffmpeg command for one segment.

    Args:
        input_path: Video file to stream.
        rtmp_url: Publish URL.
        preset: Quality preset (ignored in passthrough mode).
        passthrough: Stream-copy instead of transcoding.
        ffmpeg_path: ffmpeg executable.

    Returns:
        Argument vector, executable first.
    """
    cmd = [ffmpeg_path, "-hide_banner", "-nostats"]
    if passthrough:
        cmd.extend(build_passthrough_args(input_path, rtmp_url))
    else:
        cmd.extend(build_transcode_args(input_path, rtmp_url, preset))
    return cmd


def format_command(cmd: list[str]) -> str:
    """Render a command for logging, masking the RTMP stream key."""
    rendered = []
    for arg in cmd:
        if arg.startswith(("rtmp://", "rtmps://")) and "/" in arg.split("://", 1)[1]:
            base, _, _key = arg.rpartition("/")
            rendered.append(f"{base}/<key>")
        else:
            rendered.append(arg)
    return " ".join(rendered)
