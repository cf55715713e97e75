"""Shared test fixtures for rtmpcast.

Fake ffmpeg processes stand in for subprocess.Popen so supervisor, stop and
manager tests never need an ffmpeg binary.
"""

from __future__ import annotations

import itertools
import shutil
import subprocess
import tempfile
import threading
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from rtmpcast.config.loader import clear_config_cache
from rtmpcast.models import JobDescriptor, PlaylistMode, VideoReference
from rtmpcast.probe import EncodeStrategyProber
from rtmpcast.state import InMemoryStateSynchronizer

_pids = itertools.count(1000)


class FakeStdin:
    """Writable stdin that reports writes to its process."""

    def __init__(self, process: FakeProcess) -> None:
        self._process = process
        self.written: list[str] = []
        self.closed = False

    def write(self, data: str) -> int:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.written.append(data)
        self._process.on_stdin(data)
        return len(data)

    def flush(self) -> None:
        pass


class FakeProcess:
    """Stand-in for an ffmpeg subprocess.Popen.

    A non-blocking process has already exited with its return code. A
    blocking one runs until exit() is called, "q" arrives on stdin (unless
    ignore_quit is set) or it is killed.
    """

    def __init__(
        self,
        returncode: int = 0,
        stderr_lines: tuple[str, ...] = (),
        block: bool = False,
        ignore_quit: bool = False,
        quit_returncode: int = 0,
    ) -> None:
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.killed = False
        self.ignore_quit = ignore_quit
        self._quit_returncode = quit_returncode
        self._stderr_lines = list(stderr_lines)
        self._exited = threading.Event()
        self.stdin = FakeStdin(self)
        self.stderr = self._stderr()
        if not block:
            self.exit(returncode)

    def _stderr(self) -> Iterator[str]:
        yield from self._stderr_lines
        self._exited.wait()

    def exit(self, returncode: int) -> None:
        if self.returncode is None:
            self.returncode = returncode
        self.stdin.closed = True
        self._exited.set()

    def on_stdin(self, data: str) -> None:
        if "q" in data and not self.ignore_quit:
            self.exit(self._quit_returncode)

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("ffmpeg", timeout)
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


class FakeLauncher:
    """Process launcher returning queued outcomes.

    Each queued outcome is an exit code, a FakeProcess or an exception to
    raise. When the queue is empty, launches exit with the default code.
    """

    def __init__(self, default: int = 0) -> None:
        self.default = default
        self.commands: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self._outcomes: list[int | FakeProcess | BaseException] = []
        self._cond = threading.Condition()

    def queue(self, *outcomes: int | FakeProcess | BaseException) -> FakeLauncher:
        self._outcomes.extend(outcomes)
        return self

    def __call__(self, cmd: list[str]) -> FakeProcess:
        with self._cond:
            self.commands.append(cmd)
            outcome = self._outcomes.pop(0) if self._outcomes else self.default
            if isinstance(outcome, BaseException):
                self._cond.notify_all()
                raise outcome
            process = (
                outcome
                if isinstance(outcome, FakeProcess)
                else FakeProcess(returncode=outcome)
            )
            self.processes.append(process)
            self._cond.notify_all()
            return process

    def wait_for_launches(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least count launches were attempted."""
        with self._cond:
            return self._cond.wait_for(lambda: len(self.commands) >= count, timeout)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clear_config_cache():
    """Keep cached config files from leaking between tests."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    """Launcher whose processes exit 0 unless outcomes are queued."""
    return FakeLauncher()


@pytest.fixture
def make_process():
    """Factory for FakeProcess instances."""
    return FakeProcess


@pytest.fixture
def transcode_prober() -> MagicMock:
    """Prober that always chooses transcoding."""
    prober = MagicMock(spec=EncodeStrategyProber)
    prober.can_passthrough.return_value = False
    return prober


@pytest.fixture
def state_store() -> InMemoryStateSynchronizer:
    """In-memory stream state store."""
    return InMemoryStateSynchronizer()


@pytest.fixture
def make_descriptor():
    """Factory for JobDescriptors over fake video paths."""

    def _make(
        *names: str,
        job_id: str = "job-1",
        mode: PlaylistMode = PlaylistMode.PLAY_ONCE,
        quality=None,
    ) -> JobDescriptor:
        videos = tuple(
            VideoReference.from_path(Path("/videos") / name)
            for name in (names or ("a.mp4",))
        )
        return JobDescriptor(
            job_id=job_id,
            rtmp_url="rtmp://live.example.com/app/secret",
            videos=videos,
            mode=mode,
            quality=quality,
        )

    return _make
