"""External tool lookup and invocation.

This module provides the subprocess wrapper shared by the media probe and
encoder detection, plus helpers to locate ffmpeg/ffprobe and check that
they actually run.
"""

from __future__ import annotations

import logging
import shutil
import subprocess  # nosec B404 - subprocess is required for ffmpeg invocation
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Timeout for "-version" availability checks (seconds)
DETECTION_TIMEOUT = 10


def run_command(
    args: list[str | Path],
    timeout: int = 120,
    **kwargs: Any,
) -> tuple[str, str, int]:
    """Run external command with standard error handling.

    Args:
        args: Command and arguments. Path objects are converted to strings.
        timeout: Timeout in seconds (default 120).
        **kwargs: Additional subprocess.run arguments.

    Returns:
        Tuple of (stdout, stderr, returncode).

    Raises:
        subprocess.TimeoutExpired: If command times out. subprocess.run()
            kills the child before raising.
        OSError: If the executable cannot be started.
    """
    str_args = [str(arg) for arg in args]
    command_name = str_args[0].split("/")[-1] if str_args else "unknown"

    logger.debug(
        "Executing command: %s",
        " ".join(str_args),
        extra={"command": command_name, "arg_count": len(str_args)},
    )

    start_time = time.monotonic()
    try:
        result = subprocess.run(  # nosec B603 - caller validates args
            str_args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            **kwargs,
        )
    except subprocess.TimeoutExpired:
        logger.warning(
            "Command timed out after %ds: %s",
            timeout,
            " ".join(str_args[:3]) + ("..." if len(str_args) > 3 else ""),
            extra={"command": command_name, "timeout_seconds": timeout},
        )
        raise

    logger.debug(
        "Command completed",
        extra={
            "command": command_name,
            "elapsed_seconds": round(time.monotonic() - start_time, 3),
            "returncode": result.returncode,
        },
    )
    return result.stdout or "", result.stderr or "", result.returncode


def find_tool(name: str, configured_path: Path | None = None) -> Path | None:
    """Find a tool executable.

    Args:
        name: Tool name (e.g., "ffmpeg").
        configured_path: Optional configured path override.

    Returns:
        Path to tool executable, or None if not found.
    """
    if configured_path:
        if configured_path.is_file():
            return configured_path
        logger.warning(
            "Configured path for %s is not a file: %s", name, configured_path
        )

    which_result = shutil.which(name)
    if which_result:
        return Path(which_result)
    return None


def is_tool_available(name: str, configured_path: Path | None = None) -> bool:
    """Check that a tool exists and answers "-version" successfully.

    Args:
        name: Tool name (e.g., "ffmpeg").
        configured_path: Optional configured path override.

    Returns:
        True if the tool ran and exited 0.
    """
    path = find_tool(name, configured_path)
    if path is None:
        logger.debug("%s not found in PATH", name)
        return False

    try:
        _, stderr, rc = run_command([path, "-version"], timeout=DETECTION_TIMEOUT)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("%s availability check failed: %s", name, e)
        return False

    if rc != 0:
        logger.warning("%s -version exited with %d: %s", name, rc, stderr.strip())
        return False
    return True


def resolve_tool(name: str, configured_path: Path | None = None) -> str:
    """Return the executable to invoke for a tool.

    Falls back to the bare name so a missing tool surfaces as a launch
    error at run time instead of at construction.
    """
    path = find_tool(name, configured_path)
    return str(path) if path is not None else name
