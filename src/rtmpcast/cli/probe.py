"""Probe a file for passthrough eligibility."""

from pathlib import Path

import click

from rtmpcast.probe import EncodeStrategyProber, ProbeFailure, is_passthrough_compatible
from rtmpcast.tools import resolve_tool


@click.command("probe")
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def probe_command(ctx: click.Context, file: Path) -> None:
    """Show FILE's video codec and whether it would be stream-copied.

    Files that cannot be probed are transcoded when streamed.
    """
    config = ctx.obj["config"]
    prober = EncodeStrategyProber(
        ffprobe_path=resolve_tool("ffprobe", config.tools.ffprobe),
        timeout=config.streaming.probe_timeout,
    )

    try:
        info = prober.probe(file)
    except ProbeFailure as e:
        click.echo(f"Probe failed: {e}", err=True)
        click.echo("Strategy: transcode")
        raise SystemExit(1) from e

    click.echo(f"Codec:    {info.codec}")
    click.echo(f"Width:    {info.width}")
    strategy = "passthrough" if is_passthrough_compatible(info) else "transcode"
    click.echo(f"Strategy: {strategy}")
