"""Quality preset listing."""

import click

from rtmpcast.presets import QUALITY_PRESETS


@click.command("presets")
def presets_command() -> None:
    """List the quality presets used for transcoding."""
    click.echo(
        f"{'Quality':<10} {'Resolution':<11} {'Video':<8} {'Max':<8} "
        f"{'Buffer':<8} {'Preset':<10} {'Audio':<6} {'CRF':<4} Threads"
    )
    for level, preset in QUALITY_PRESETS.items():
        click.echo(
            f"{level.value:<10} {preset.width}x{preset.height:<6} "
            f"{preset.video_bitrate:<8} {preset.max_bitrate:<8} "
            f"{preset.buffer_size:<8} {preset.speed_preset:<10} "
            f"{preset.audio_bitrate:<6} {preset.crf:<4} {preset.threads}"
        )
