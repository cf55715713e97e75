"""Unit tests for the per-job stream supervisor."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from rtmpcast.exceptions import PermanentFailure
from rtmpcast.models import PlaylistMode
from rtmpcast.presets import QualityLevel
from rtmpcast.registry import JobRegistry, RunningJobRecord
from rtmpcast.retry import RetryPolicy
from rtmpcast.shutdown import ShutdownCoordinator
from rtmpcast.state import AuditAction, SafeStateSynchronizer
from rtmpcast.supervisor import (
    SegmentOutcome,
    StreamSupervisor,
    SupervisorHandle,
    SupervisorState,
    TerminalReason,
    next_transition,
)

RUN_ID = "run-1"


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_supervisor(registry, fake_launcher, transcode_prober, state_store, sleeps):
    """Build a supervisor whose registry record already exists."""

    def _make(descriptor, **overrides) -> StreamSupervisor:
        registry.register(descriptor.job_id, RunningJobRecord(run_id=RUN_ID))
        kwargs = {
            "state": SafeStateSynchronizer(state_store),
            "prober": transcode_prober,
            "quality_provider": lambda: QualityLevel.HIGH,
            "retry_policy": RetryPolicy(),
            "launcher": fake_launcher,
            "sleep": sleeps.append,
        }
        kwargs.update(overrides)
        return StreamSupervisor(descriptor, registry, RUN_ID, **kwargs)

    return _make


def launched_files(launcher) -> list[str]:
    """Input file of every launched ffmpeg command."""
    return [cmd[cmd.index("-i") + 1].rsplit("/", 1)[-1] for cmd in launcher.commands]


# =============================================================================
# next_transition
# =============================================================================


class TestNextTransition:
    """Tests for the exit decision helper."""

    def test_success_resets_retry_count(self) -> None:
        """A clean exit selects the next segment and clears failures."""
        transition = next_transition(SegmentOutcome(0), 2, RetryPolicy(), True)
        assert transition.state is SupervisorState.SELECTING_SEGMENT
        assert transition.retry_count == 0
        assert transition.reason is None

    def test_failure_below_ceiling_waits_to_retry(self) -> None:
        """A failure under the ceiling goes to RETRY_WAIT."""
        transition = next_transition(SegmentOutcome(1), 0, RetryPolicy(), True)
        assert transition.state is SupervisorState.RETRY_WAIT
        assert transition.retry_count == 1

    def test_failure_at_ceiling_terminates(self) -> None:
        """The third consecutive failure is permanent."""
        transition = next_transition(SegmentOutcome(1), 2, RetryPolicy(), True)
        assert transition.state is SupervisorState.TERMINATING
        assert transition.reason is TerminalReason.FAILED
        assert transition.retry_count == 3

    def test_missing_record_means_stop_even_on_success(self) -> None:
        """A removed record wins over a clean exit code."""
        transition = next_transition(SegmentOutcome(0), 0, RetryPolicy(), False)
        assert transition.state is SupervisorState.TERMINATING
        assert transition.reason is TerminalReason.STOPPED

    def test_launch_error_counts_as_failure(self) -> None:
        """An outcome without an exit code is a failure."""
        outcome = SegmentOutcome(None, "No such file or directory")
        assert not outcome.succeeded
        transition = next_transition(outcome, 0, RetryPolicy(), True)
        assert transition.state is SupervisorState.RETRY_WAIT


# =============================================================================
# Playlist traversal
# =============================================================================


class TestPlaylistTraversal:
    """Tests for segment sequencing."""

    def test_play_once_plays_each_video_then_completes(
        self, make_supervisor, make_descriptor, fake_launcher, registry, sleeps
    ) -> None:
        """PLAY_ONCE plays every video once and completes."""
        supervisor = make_supervisor(make_descriptor("a.mp4", "b.mp4"))

        result = supervisor.run()

        assert result.reason is TerminalReason.COMPLETED
        assert result.segments_started == 2
        assert launched_files(fake_launcher) == ["a.mp4", "b.mp4"]
        assert "job-1" not in registry
        # Pause between segments, none after the last one
        assert sleeps == [0.5]

    def test_loop_keeps_playing_until_stopped(
        self, make_supervisor, make_descriptor, fake_launcher, registry
    ) -> None:
        """LOOP wraps around and only ends when the record is removed."""

        def sleep(seconds: float) -> None:
            if len(fake_launcher.commands) >= 5:
                registry.remove("job-1")

        supervisor = make_supervisor(
            make_descriptor("a.mp4", "b.mp4", mode=PlaylistMode.LOOP), sleep=sleep
        )

        result = supervisor.run()

        assert result.reason is TerminalReason.STOPPED
        assert launched_files(fake_launcher) == [
            "a.mp4",
            "b.mp4",
            "a.mp4",
            "b.mp4",
            "a.mp4",
        ]

    def test_completion_persists_idle_state(
        self, make_supervisor, make_descriptor, state_store
    ) -> None:
        """A finished job is recorded as not streaming with no video."""
        state_store.set_streaming("job-1", True)
        supervisor = make_supervisor(make_descriptor("a.mp4"))

        supervisor.run()

        assert state_store.is_streaming("job-1") is False
        assert state_store.current_video("job-1") is None
        events = state_store.events("job-1")
        assert [event.action for event in events] == [AuditAction.COMPLETED]


# =============================================================================
# Retries
# =============================================================================


class TestRetries:
    """Tests for failure handling and backoff."""

    def test_three_failures_terminate_job(
        self, make_supervisor, make_descriptor, fake_launcher, registry, sleeps,
        state_store,
    ) -> None:
        """Three consecutive failures end the job with an ERROR event."""
        fake_launcher.default = 1
        supervisor = make_supervisor(
            make_descriptor("a.mp4", "b.mp4", mode=PlaylistMode.LOOP)
        )

        result = supervisor.run()

        assert result.reason is TerminalReason.FAILED
        assert isinstance(result.error, PermanentFailure)
        assert result.error.attempts == 3
        assert launched_files(fake_launcher) == ["a.mp4", "a.mp4", "a.mp4"]
        assert sleeps == [2.0, 4.0]
        assert "job-1" not in registry
        events = state_store.events("job-1")
        assert events[-1].action is AuditAction.ERROR
        assert state_store.is_streaming("job-1") is False

    def test_success_after_failures_resets_counter(
        self, make_supervisor, make_descriptor, fake_launcher, sleeps
    ) -> None:
        """Two failures then a success leave the retry count at zero."""
        fake_launcher.queue(1, 1, 0)
        supervisor = make_supervisor(make_descriptor("a.mp4"))

        result = supervisor.run()

        assert result.reason is TerminalReason.COMPLETED
        assert supervisor.retry_count == 0
        assert len(fake_launcher.commands) == 3
        assert sleeps == [2.0, 4.0]

    def test_failures_on_later_segment_start_from_zero(
        self, make_supervisor, make_descriptor, fake_launcher
    ) -> None:
        """Earlier failures do not count toward a later segment's ceiling."""
        fake_launcher.queue(1, 1, 0, 1, 1, 0)
        supervisor = make_supervisor(make_descriptor("a.mp4", "b.mp4"))

        result = supervisor.run()

        assert result.reason is TerminalReason.COMPLETED
        assert launched_files(fake_launcher) == ["a.mp4"] * 3 + ["b.mp4"] * 3

    def test_launch_error_is_retried(
        self, make_supervisor, make_descriptor, fake_launcher, sleeps
    ) -> None:
        """An ffmpeg that cannot be started counts as one failure."""
        fake_launcher.queue(FileNotFoundError("ffmpeg"), 0)
        supervisor = make_supervisor(make_descriptor("a.mp4"))

        result = supervisor.run()

        assert result.reason is TerminalReason.COMPLETED
        assert result.segments_started == 1
        assert sleeps == [2.0]

    def test_error_line_from_stderr_is_kept(
        self, make_supervisor, make_descriptor, fake_launcher, make_process
    ) -> None:
        """The last stderr line mentioning an error becomes last_error."""
        fake_launcher.default = 1
        fake_launcher.queue(
            make_process(
                returncode=1,
                stderr_lines=(
                    "frame=  10 fps=0.0",
                    "rtmp://host/app: Connection refused ERROR\n",
                ),
            )
        )
        supervisor = make_supervisor(make_descriptor("a.mp4"))

        result = supervisor.run()

        assert result.last_error == "rtmp://host/app: Connection refused ERROR"
        assert "Connection refused" in str(result.error)


# =============================================================================
# Quality
# =============================================================================


class TestQualitySelection:
    """Tests for per-segment quality resolution."""

    def test_quality_change_applies_to_next_segment(
        self, make_supervisor, make_descriptor, fake_launcher
    ) -> None:
        """The provider is read at each launch, not once per job."""
        provider = MagicMock(side_effect=[QualityLevel.HIGH, QualityLevel.LOW])
        supervisor = make_supervisor(
            make_descriptor("a.mp4", "b.mp4"), quality_provider=provider
        )

        supervisor.run()

        first, second = fake_launcher.commands
        assert "scale=1920:1080" in first[first.index("-vf") + 1]
        assert "scale=1280:720" in second[second.index("-vf") + 1]

    def test_job_override_ignores_global_quality(
        self, make_supervisor, make_descriptor, fake_launcher
    ) -> None:
        """A descriptor quality wins over the process-wide level."""
        provider = MagicMock(return_value=QualityLevel.HIGH)
        supervisor = make_supervisor(
            make_descriptor("a.mp4", quality=QualityLevel.ULTRALOW),
            quality_provider=provider,
        )

        supervisor.run()

        cmd = fake_launcher.commands[0]
        assert "scale=854:480" in cmd[cmd.index("-vf") + 1]
        provider.assert_not_called()

    def test_passthrough_copies_streams(
        self, make_supervisor, make_descriptor, fake_launcher, transcode_prober
    ) -> None:
        """A compatible file is relayed with -c copy."""
        transcode_prober.can_passthrough.return_value = True
        supervisor = make_supervisor(make_descriptor("a.mp4"))

        supervisor.run()

        cmd = fake_launcher.commands[0]
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert "-vf" not in cmd


# =============================================================================
# Stopping
# =============================================================================


class TestStopping:
    """Tests for stop requests observed by the supervisor."""

    def test_stop_while_running_does_not_advance(
        self, make_supervisor, make_descriptor, fake_launcher, make_process,
        registry, state_store,
    ) -> None:
        """A stopped segment exiting 0 ends the job instead of advancing."""
        process = make_process(block=True)
        fake_launcher.queue(process)
        supervisor = make_supervisor(
            make_descriptor("a.mp4", "b.mp4", mode=PlaylistMode.LOOP)
        )
        handle = SupervisorHandle(supervisor, RUN_ID)
        handle.start()
        assert fake_launcher.wait_for_launches(1)
        # Wait for the process to be attached to the record
        for _ in range(100):
            if registry.snapshot("job-1").pid == process.pid:
                break
            time.sleep(0.01)

        assert ShutdownCoordinator(registry, grace_period=1.0).stop("job-1")
        result = handle.join(timeout=5.0)

        assert result is not None
        assert result.reason is TerminalReason.STOPPED
        assert process.stdin.written == ["q"]
        assert not process.killed
        assert len(fake_launcher.commands) == 1
        assert state_store.events("job-1")[-1].action is AuditAction.STOPPED

    def test_stop_during_retry_wait(
        self, make_supervisor, make_descriptor, fake_launcher, registry
    ) -> None:
        """A stop during backoff prevents the retry."""
        fake_launcher.default = 1
        supervisor = make_supervisor(
            make_descriptor("a.mp4"), sleep=lambda seconds: registry.remove("job-1")
        )

        result = supervisor.run()

        assert result.reason is TerminalReason.STOPPED
        assert len(fake_launcher.commands) == 1

    def test_stop_during_launch_terminates_new_process(
        self, make_supervisor, make_descriptor, make_process, registry
    ) -> None:
        """A process launched after its record vanished is stopped at once."""
        process = make_process(block=True)

        def launcher(cmd):
            registry.remove("job-1")
            return process

        supervisor = make_supervisor(
            make_descriptor("a.mp4"), launcher=launcher, grace_period=1.0
        )

        result = supervisor.run()

        assert result.reason is TerminalReason.STOPPED
        assert process.stdin.written == ["q"]
        assert process.returncode == 0

    def test_newer_run_record_is_left_alone(
        self, make_supervisor, make_descriptor, fake_launcher, registry, state_store
    ) -> None:
        """A finishing run never touches a record or state owned by another run."""
        fake_launcher.default = 1

        def restart(seconds: float) -> None:
            registry.remove("job-1")
            registry.register("job-1", RunningJobRecord(run_id="run-2"))
            state_store.set_streaming("job-1", True)

        supervisor = make_supervisor(make_descriptor("a.mp4"), sleep=restart)

        result = supervisor.run()

        assert result.reason is TerminalReason.STOPPED
        assert registry.snapshot("job-1").run_id == "run-2"
        assert state_store.is_streaming("job-1") is True
        assert state_store.events("job-1") == []

    def test_inconsistent_state_fails_the_job(
        self, make_supervisor, make_descriptor, fake_launcher, state_store
    ) -> None:
        """Entering RUNNING without a process ends the job as an error."""
        supervisor = make_supervisor(make_descriptor("a.mp4"))
        supervisor.state = SupervisorState.RUNNING

        result = supervisor.run()

        assert result.reason is TerminalReason.FAILED
        assert result.last_error == "No ffmpeg process to wait for"
        assert fake_launcher.commands == []
        assert state_store.events("job-1")[-1].action is AuditAction.ERROR

    def test_terminal_write_waits_for_restart_in_progress(
        self, make_supervisor, make_descriptor, fake_launcher, registry, state_store
    ) -> None:
        """A restart persisting its start is never overwritten by the old run."""
        fake_launcher.default = 1
        supervisor = make_supervisor(
            make_descriptor("a.mp4"), sleep=lambda seconds: registry.remove("job-1")
        )

        with registry.persistence_lock:
            handle = SupervisorHandle(supervisor, RUN_ID)
            handle.start()
            for _ in range(200):
                if supervisor.state is SupervisorState.TERMINATING:
                    break
                time.sleep(0.01)
            assert supervisor.state is SupervisorState.TERMINATING
            # The restart registers and persists while the old run is blocked
            registry.register("job-1", RunningJobRecord(run_id="run-2"))
            state_store.set_streaming("job-1", True)

        result = handle.join(timeout=5.0)

        assert result is not None
        assert result.reason is TerminalReason.STOPPED
        assert state_store.is_streaming("job-1") is True
        assert state_store.events("job-1") == []
        assert registry.snapshot("job-1").run_id == "run-2"


# =============================================================================
# Persistence failures
# =============================================================================


class TestPersistenceFailures:
    """Store errors never interrupt streaming."""

    def test_failing_store_does_not_stop_playback(
        self, make_supervisor, make_descriptor, fake_launcher
    ) -> None:
        """Every store call raising still lets the playlist complete."""
        store = MagicMock()
        store.set_current_video.side_effect = RuntimeError("db down")
        store.set_streaming.side_effect = RuntimeError("db down")
        store.append_audit_event.side_effect = RuntimeError("db down")
        supervisor = make_supervisor(
            make_descriptor("a.mp4", "b.mp4"), state=SafeStateSynchronizer(store)
        )

        result = supervisor.run()

        assert result.reason is TerminalReason.COMPLETED
        assert len(fake_launcher.commands) == 2
