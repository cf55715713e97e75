"""Foreground stream command."""

from __future__ import annotations

import logging
import signal
import threading
import uuid
from pathlib import Path

import click

from rtmpcast.cli import EXIT_DENIED, EXIT_FAILED, EXIT_OK
from rtmpcast.exceptions import AdmissionDenied
from rtmpcast.manager import StreamManager
from rtmpcast.models import JobDescriptor, PlaylistMode, VideoReference
from rtmpcast.presets import QualityLevel
from rtmpcast.state import InMemoryStateSynchronizer
from rtmpcast.supervisor import TerminalReason

logger = logging.getLogger(__name__)

# How often the foreground loop checks for a stop request (seconds)
POLL_INTERVAL = 0.5


@click.command("stream")
@click.argument("rtmp_url")
@click.argument(
    "videos",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--mode",
    type=click.Choice([mode.name for mode in PlaylistMode], case_sensitive=False),
    default=PlaylistMode.LOOP.name,
    show_default=True,
    help="Playlist order.",
)
@click.option(
    "--quality",
    type=click.Choice([level.value for level in QualityLevel], case_sensitive=False),
    default=None,
    help="Fix the quality for this stream (default: configured quality).",
)
@click.option("--job-id", default=None, help="Stream identifier (default: random).")
@click.pass_context
def stream_command(
    ctx: click.Context,
    rtmp_url: str,
    videos: tuple[Path, ...],
    mode: str,
    quality: str | None,
    job_id: str | None,
) -> None:
    """Stream VIDEOS to RTMP_URL until the playlist ends or Ctrl-C.

    Examples:

    \b
        rtmpcast stream rtmp://live.example.com/app/KEY intro.mp4 main.mkv
        rtmpcast stream --mode shuffle_loop --quality low rtmp://... *.mp4
    """
    manager: StreamManager = ctx.obj.get("manager") or StreamManager.from_config(
        ctx.obj["config"], InMemoryStateSynchronizer()
    )
    descriptor = JobDescriptor(
        job_id=job_id or uuid.uuid4().hex[:8],
        rtmp_url=rtmp_url,
        videos=tuple(VideoReference.from_path(path.resolve()) for path in videos),
        mode=PlaylistMode.parse(mode),
        quality=QualityLevel.parse(quality) if quality else None,
    )

    try:
        manager.start(descriptor)
    except AdmissionDenied as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(EXIT_DENIED) from e

    stop_requested = threading.Event()

    def _signal_handler(signum: int, frame) -> None:
        logger.info("Received %s, stopping stream...", signal.Signals(signum).name)
        stop_requested.set()

    previous = {
        sig: signal.signal(sig, _signal_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        result = None
        while result is None:
            if stop_requested.is_set():
                manager.stop(descriptor.job_id)
                result = manager.wait(descriptor.job_id)
                break
            result = manager.wait(descriptor.job_id, timeout=POLL_INTERVAL)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if result is None:
        raise SystemExit(EXIT_FAILED)

    if result.reason is TerminalReason.FAILED:
        click.echo(f"Error: {result.error or result.last_error}", err=True)
        raise SystemExit(EXIT_FAILED)

    click.echo(
        f"Stream {descriptor.job_id} {result.reason.value} "
        f"after {result.segments_started} segment(s)"
    )
    raise SystemExit(EXIT_OK)
