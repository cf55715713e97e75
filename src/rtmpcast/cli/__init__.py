"""CLI module for rtmpcast."""

import logging
from pathlib import Path

import click

from rtmpcast.config import get_config
from rtmpcast.logging import configure_logging

# Exit codes of the stream command
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_DENIED = 2

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(package_name="rtmpcast")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: ~/.rtmpcast/config.toml).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """rtmpcast - Stream video playlists to RTMP endpoints with ffmpeg."""
    ctx.ensure_object(dict)

    # Preserve a config passed in by tests
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = get_config(
                config_path=config_path,
                log_level=log_level,
                log_file=log_file,
                log_format="json" if log_json else None,
            )
        except ValueError as e:
            raise click.UsageError(f"Invalid configuration: {e}") from e

    configure_logging(ctx.obj["config"].logging)


def _register_commands():
    from rtmpcast.cli.presets import presets_command
    from rtmpcast.cli.probe import probe_command
    from rtmpcast.cli.status import status_command
    from rtmpcast.cli.stream import stream_command

    main.add_command(presets_command)
    main.add_command(probe_command)
    main.add_command(status_command)
    main.add_command(stream_command)


_register_commands()
