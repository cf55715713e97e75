"""Supervisor status command."""

import json
import logging

import click

from rtmpcast.manager import StatusReport, StreamManager

logger = logging.getLogger(__name__)


@click.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show stream capacity, memory, quality and ffmpeg availability.

    Examples:

    \b
        rtmpcast status
        rtmpcast status --json
    """
    manager: StreamManager = ctx.obj.get("manager") or StreamManager.from_config(
        ctx.obj["config"]
    )
    report = manager.status()

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    _display_status(report)


def _display_status(report: StatusReport) -> None:
    """Render the status report in human-readable format."""
    memory = (
        f"{report.available_memory_mb} MB"
        if report.available_memory_mb is not None
        else "unknown"
    )
    click.echo(f"Active streams:   {report.active_streams}/{report.max_streams}")
    click.echo(f"Available memory: {memory}")
    click.echo(f"Current quality:  {report.current_quality.value}")
    click.echo(
        f"ffmpeg:           {'available' if report.ffmpeg_available else 'missing'}"
    )
