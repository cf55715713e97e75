"""Per-job stream supervisor.

One StreamSupervisor runs on its own thread for the lifetime of a job. It
walks the playlist one segment (one ffmpeg process per video) at a time:

    SELECTING_SEGMENT -> LAUNCHING -> RUNNING -> SELECTING_SEGMENT ...
                             ^            |
                             |            v
                             +------ RETRY_WAIT
    any state -> TERMINATING

A failed segment is retried (same video, sequencer not advanced) with
backoff until the retry ceiling is reached. Absence of the job's registry
record is the only stop signal; it is checked before each launch and right
after each process exit.
"""

from __future__ import annotations

import logging
import random
import subprocess  # nosec B404 - subprocess is required for ffmpeg invocation
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rtmpcast.command import build_stream_command, format_command
from rtmpcast.exceptions import PermanentFailure
from rtmpcast.logging.context import set_current_video, stream_context
from rtmpcast.models import JobDescriptor, VideoReference
from rtmpcast.playlist import PlaylistItem, PlaylistSequencer
from rtmpcast.presets import QualityLevel, get_preset
from rtmpcast.probe import EncodeStrategyProber
from rtmpcast.registry import JobRegistry, ProcessHandle
from rtmpcast.retry import RetryPolicy
from rtmpcast.shutdown import DEFAULT_GRACE_PERIOD, terminate_process
from rtmpcast.state import AuditAction, SafeStateSynchronizer

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_PAUSE = 0.5

# Substring marking an ffmpeg stderr line worth keeping as "last error"
ERROR_MARKER = "error"


class SupervisorState(Enum):
    """States of the per-job segment loop."""

    SELECTING_SEGMENT = "selecting_segment"
    LAUNCHING = "launching"
    RUNNING = "running"
    RETRY_WAIT = "retry_wait"
    TERMINATING = "terminating"


class TerminalReason(Enum):
    """Why a supervisor finished."""

    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class SegmentOutcome:
    """How one ffmpeg process ended."""

    returncode: int | None
    """Exit code, or None if the process could not be launched."""
    last_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class Transition:
    """Result of evaluating a segment outcome."""

    state: SupervisorState
    retry_count: int
    reason: TerminalReason | None = None


def next_transition(
    outcome: SegmentOutcome,
    retry_count: int,
    policy: RetryPolicy,
    still_registered: bool,
) -> Transition:
    """Decide what follows a finished segment.

    Args:
        outcome: How the segment's process ended.
        retry_count: Consecutive failures before this segment.
        policy: Retry ceiling and backoff.
        still_registered: Whether the job's registry record survived.

    Returns:
        Next state and updated retry count; reason is set when terminating.
    """
    if not still_registered:
        return Transition(SupervisorState.TERMINATING, retry_count, TerminalReason.STOPPED)
    if outcome.succeeded:
        return Transition(SupervisorState.SELECTING_SEGMENT, 0)

    failures = retry_count + 1
    if policy.is_exhausted(failures):
        return Transition(SupervisorState.TERMINATING, failures, TerminalReason.FAILED)
    return Transition(SupervisorState.RETRY_WAIT, failures)


def launch_process(cmd: list[str]) -> ProcessHandle:
    """Start ffmpeg with a stdin pipe for the quit command and piped stderr."""
    return subprocess.Popen(  # nosec B603 - args come from build_stream_command
        cmd,
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
    )


@dataclass(frozen=True)
class SupervisorResult:
    """Final report of a supervisor run."""

    job_id: str
    reason: TerminalReason
    segments_started: int
    last_error: str | None = None
    error: PermanentFailure | None = None


class StreamSupervisor:
    """Runs the segment loop for one job."""

    def __init__(
        self,
        descriptor: JobDescriptor,
        registry: JobRegistry,
        run_id: str,
        state: SafeStateSynchronizer,
        prober: EncodeStrategyProber,
        quality_provider: Callable[[], QualityLevel],
        retry_policy: RetryPolicy | None = None,
        ffmpeg_path: str = "ffmpeg",
        segment_pause: float = DEFAULT_SEGMENT_PAUSE,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        launcher: Callable[[list[str]], ProcessHandle] = launch_process,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the supervisor.

        The job's registry record (keyed by run_id) must already exist;
        the stream manager creates it during admission.

        Args:
            descriptor: The job to run.
            registry: Shared registry of running jobs.
            run_id: Identifies this run's registry record.
            state: Best-effort persistence of stream status.
            prober: Decides passthrough vs transcode per file.
            quality_provider: Returns the process-wide quality, read once
                per segment.
            retry_policy: Retry ceiling and backoff.
            ffmpeg_path: ffmpeg executable.
            segment_pause: Seconds between successful segments.
            grace_period: Seconds to wait for a soft stop before killing.
            launcher: Starts a process from an argument vector.
            sleep: Sleep function (tests pass a no-op).
            rng: Random source for shuffled playlists.
        """
        self.descriptor = descriptor
        self._registry = registry
        self._run_id = run_id
        self._state = state
        self._prober = prober
        self._quality_provider = quality_provider
        self._policy = retry_policy or RetryPolicy()
        self._ffmpeg_path = ffmpeg_path
        self._segment_pause = segment_pause
        self._grace_period = grace_period
        self._launcher = launcher
        self._sleep = sleep
        self._sequencer = PlaylistSequencer(descriptor.videos, descriptor.mode, rng)

        self._item: PlaylistItem | None = None
        self._process: ProcessHandle | None = None
        self._retry_count = 0
        self._last_error: str | None = None
        self._segments_started = 0
        self._pause_pending = False
        self._reason = TerminalReason.COMPLETED
        self.state = SupervisorState.SELECTING_SEGMENT

    @property
    def job_id(self) -> str:
        return self.descriptor.job_id

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def first_video(self) -> VideoReference:
        """The video the first segment will play, after any shuffle."""
        return self._sequencer.order[0]

    def run(self) -> SupervisorResult:
        """Run the segment loop until the job terminates."""
        with stream_context(self.job_id):
            logger.info(
                "Supervisor started: %d video(s), mode=%s",
                len(self.descriptor.videos),
                self.descriptor.mode.name,
            )
            handlers = {
                SupervisorState.SELECTING_SEGMENT: self._select_segment,
                SupervisorState.LAUNCHING: self._launch,
                SupervisorState.RUNNING: self._wait_for_exit,
                SupervisorState.RETRY_WAIT: self._retry_wait,
            }
            try:
                while self.state is not SupervisorState.TERMINATING:
                    self.state = handlers[self.state]()
            except Exception as e:
                logger.exception("Supervisor failed unexpectedly")
                self._reason = TerminalReason.FAILED
                self._last_error = self._last_error or str(e)
                if self._process is not None:
                    terminate_process(self._process, self._grace_period)
            return self._terminate()

    def _stop_requested(self) -> bool:
        if self._registry.is_active(self.job_id, self._run_id):
            return False
        logger.info("Stop requested")
        self._reason = TerminalReason.STOPPED
        return True

    def _select_segment(self) -> SupervisorState:
        if self._pause_pending:
            self._pause_pending = False
            self._sleep(self._segment_pause)

        if self._stop_requested():
            return SupervisorState.TERMINATING

        item = self._sequencer.next()
        if item is None:
            logger.info("Playlist completed")
            self._reason = TerminalReason.COMPLETED
            return SupervisorState.TERMINATING

        self._item = item
        return SupervisorState.LAUNCHING

    def _launch(self) -> SupervisorState:
        item = self._item
        if item is None:
            raise RuntimeError("Launch requested before a segment was selected")
        video = item.video
        set_current_video(video.filename)
        self._state.set_current_video(self.job_id, video.filename)

        # Quality is resolved per segment so changes apply from the next one
        level = self.descriptor.quality or self._quality_provider()
        passthrough = self._prober.can_passthrough(video.path)
        cmd = build_stream_command(
            video.path,
            self.descriptor.rtmp_url,
            get_preset(level),
            passthrough,
            ffmpeg_path=self._ffmpeg_path,
        )

        logger.info(
            "Playing %s (%s, quality=%s)",
            video.filename,
            "passthrough" if passthrough else "transcode",
            level.value,
        )
        logger.debug("Command: %s", format_command(cmd))

        try:
            process = self._launcher(cmd)
        except OSError as e:
            logger.error("Failed to launch ffmpeg: %s", e)
            return self._after_exit(SegmentOutcome(None, str(e)))

        self._segments_started += 1
        attached = self._registry.update(
            self.job_id,
            self._run_id,
            process=process,
            started_at=time.time(),
            playlist_index=item.index,
            current_video=video.filename,
            retry_count=self._retry_count,
            segments_started=self._segments_started,
        )
        if not attached:
            # Stopped while launching; nobody else holds this process
            logger.info("Stop requested during launch")
            terminate_process(process, self._grace_period)
            self._reason = TerminalReason.STOPPED
            return SupervisorState.TERMINATING

        self._process = process
        logger.debug("ffmpeg running as pid %s", process.pid, extra={"pid": process.pid})
        return SupervisorState.RUNNING

    def _wait_for_exit(self) -> SupervisorState:
        process = self._process
        if process is None:
            raise RuntimeError("No ffmpeg process to wait for")
        last_error = self._drain_stderr(process)
        returncode = process.wait()
        self._process = None
        return self._after_exit(SegmentOutcome(returncode, last_error))

    def _drain_stderr(self, process: ProcessHandle) -> str | None:
        """Read stderr until EOF, keeping the last line that reports an error."""
        last_error = None
        if process.stderr is None:
            return None
        try:
            for line in process.stderr:
                line = line.strip()
                if line and ERROR_MARKER in line.lower():
                    last_error = line
                    logger.warning("ffmpeg: %s", line)
        except (ValueError, OSError) as e:
            # Pipe closed underneath us (process killed)
            logger.debug("Stderr reader stopped: %s", e)
        return last_error

    def _after_exit(self, outcome: SegmentOutcome) -> SupervisorState:
        still_registered = self._registry.is_active(self.job_id, self._run_id)
        transition = next_transition(
            outcome, self._retry_count, self._policy, still_registered
        )
        self._retry_count = transition.retry_count
        if outcome.last_error:
            self._last_error = outcome.last_error

        if transition.reason is TerminalReason.STOPPED:
            logger.info("Stop requested, segment ended with code %s", outcome.returncode)
            self._reason = TerminalReason.STOPPED
            return transition.state

        self._registry.update(
            self.job_id,
            self._run_id,
            retry_count=self._retry_count,
            last_error=self._last_error,
        )

        if outcome.succeeded:
            item = self._item
            last_of_final_pass = False
            if item is not None:
                logger.info("Finished %s", item.video.filename)
                last_of_final_pass = (
                    item.is_last_of_pass and not self.descriptor.mode.loops
                )
            self._pause_pending = not last_of_final_pass
        elif transition.reason is TerminalReason.FAILED:
            logger.error(
                "Segment failed (code=%s), giving up after %d attempt(s)",
                outcome.returncode,
                self._retry_count,
            )
            self._reason = TerminalReason.FAILED
        else:
            logger.warning(
                "Segment failed (code=%s), attempt %d/%d",
                outcome.returncode,
                self._retry_count,
                self._policy.max_attempts,
            )
        return transition.state

    def _retry_wait(self) -> SupervisorState:
        delay = self._policy.delay_for(self._retry_count)
        logger.info("Retrying in %.1fs", delay)
        self._sleep(delay)
        if self._stop_requested():
            return SupervisorState.TERMINATING
        return SupervisorState.LAUNCHING

    def _terminate(self) -> SupervisorResult:
        """Release the registry slot and persist the terminal state.

        Runs under the registry's persistence lock, which the stream manager
        also holds while registering and persisting a start. A restart of
        the same job id therefore lands either before the release (and its
        state is left alone) or after the terminal writes.
        """
        self.state = SupervisorState.TERMINATING
        set_current_video(None)

        error = None
        if self._reason is TerminalReason.FAILED:
            error = PermanentFailure(self.job_id, self._retry_count, self._last_error)

        with self._registry.persistence_lock:
            if not self._registry.release(self.job_id, self._run_id):
                # The job was restarted; its stored state belongs to the new run
                logger.info(
                    "Supervisor finished: %s (job restarted)", self._reason.value
                )
                return self._build_result(error)
            self._persist_terminal(error)

        logger.info("Supervisor finished: %s", self._reason.value)
        return self._build_result(error)

    def _persist_terminal(self, error: PermanentFailure | None) -> None:
        if self._reason is TerminalReason.COMPLETED:
            action = AuditAction.COMPLETED
            message = (
                f"Playlist completed after {self._segments_started} segment(s)"
            )
        elif self._reason is TerminalReason.STOPPED:
            action = AuditAction.STOPPED
            message = "Stream stopped"
        else:
            action = AuditAction.ERROR
            message = str(error)

        self._state.mark_stopped(self.job_id, action, message)

    def _build_result(self, error: PermanentFailure | None) -> SupervisorResult:
        return SupervisorResult(
            job_id=self.job_id,
            reason=self._reason,
            segments_started=self._segments_started,
            last_error=self._last_error,
            error=error,
        )


class SupervisorHandle:
    """Thread running a StreamSupervisor, with access to its result."""

    def __init__(
        self,
        supervisor: StreamSupervisor,
        run_id: str,
        on_finish: Callable[[SupervisorHandle], None] | None = None,
    ) -> None:
        """Initialize the handle.

        Args:
            supervisor: Supervisor to run.
            run_id: Run the supervisor belongs to.
            on_finish: Called on the supervisor thread once the result is
                available.
        """
        self.supervisor = supervisor
        self.run_id = run_id
        self._on_finish = on_finish
        self._result: SupervisorResult | None = None
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"stream-{supervisor.job_id[:8]}",
        )

    @property
    def job_id(self) -> str:
        return self.supervisor.job_id

    @property
    def result(self) -> SupervisorResult | None:
        """The supervisor's result once it has finished."""
        return self._result

    def start(self) -> None:
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> SupervisorResult | None:
        """Wait for the supervisor thread; returns None on timeout."""
        self._thread.join(timeout)
        return self._result

    def _run(self) -> None:
        self._result = self.supervisor.run()
        if self._on_finish is not None:
            self._on_finish(self)


def new_run_id() -> str:
    return uuid.uuid4().hex
