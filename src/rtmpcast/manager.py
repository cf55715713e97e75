"""Stream manager: the entry point an API layer talks to.

StreamManager owns the job registry, admission control, the shutdown
coordinator and the process-wide current quality. Starting a job runs
admission synchronously and then hands the job to a supervisor thread;
every later failure is handled there and reported through persistence
and the supervisor's result.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from rtmpcast.admission import AdmissionController, get_available_memory_mb
from rtmpcast.config.models import RtmpcastConfig, StreamingConfig, ToolPathsConfig
from rtmpcast.exceptions import AdmissionDenied, AdmissionReason, EmptyPlaylistError
from rtmpcast.models import JobDescriptor
from rtmpcast.presets import QualityLevel
from rtmpcast.probe import EncodeStrategyProber
from rtmpcast.registry import JobRegistry, JobSnapshot, ProcessHandle, RunningJobRecord
from rtmpcast.retry import RetryPolicy
from rtmpcast.shutdown import ShutdownCoordinator
from rtmpcast.state import (
    AuditAction,
    NullStateSynchronizer,
    SafeStateSynchronizer,
    StateSynchronizer,
)
from rtmpcast.supervisor import (
    StreamSupervisor,
    SupervisorHandle,
    SupervisorResult,
    launch_process,
    new_run_id,
)
from rtmpcast.tools import is_tool_available, resolve_tool

logger = logging.getLogger(__name__)

# Finished results kept for wait() after a supervisor's handle is released
RESULT_HISTORY = 64


@dataclass(frozen=True)
class StatusReport:
    """Point-in-time view of the supervisor."""

    active_streams: int
    max_streams: int
    available_memory_mb: int | None
    current_quality: QualityLevel
    ffmpeg_available: bool

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the field names API clients expect."""
        return {
            "activeStreams": self.active_streams,
            "maxStreams": self.max_streams,
            "availableMemoryMB": self.available_memory_mb,
            "currentQuality": self.current_quality.value,
            "ffmpegAvailable": self.ffmpeg_available,
        }


class StreamManager:
    """Starts, stops and reports on stream jobs."""

    def __init__(
        self,
        streaming: StreamingConfig | None = None,
        tools: ToolPathsConfig | None = None,
        state: StateSynchronizer | None = None,
        *,
        encoder_available: Callable[[], bool] | None = None,
        memory_probe: Callable[[], int | None] = get_available_memory_mb,
        prober: EncodeStrategyProber | None = None,
        launcher: Callable[[list[str]], ProcessHandle] = launch_process,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            streaming: Streaming settings; defaults apply when None.
            tools: Tool path overrides.
            state: Persistence for stream status and audit events.
            encoder_available: Returns True if ffmpeg can be invoked;
                defaults to running "ffmpeg -version".
            memory_probe: Returns available memory in MiB.
            prober: Passthrough prober; built from tools when None.
            launcher: Starts an ffmpeg process (tests pass a fake).
            sleep: Sleep used for backoff and inter-segment pauses.
            rng: Random source for shuffled playlists.
        """
        self._config = streaming or StreamingConfig()
        self._tools = tools or ToolPathsConfig()
        self._state = SafeStateSynchronizer(state or NullStateSynchronizer())
        self._registry = JobRegistry()
        self._encoder_available = encoder_available or (
            lambda: is_tool_available("ffmpeg", self._tools.ffmpeg)
        )
        self._memory_probe = memory_probe
        self._admission = AdmissionController(
            self._registry,
            self._encoder_available,
            max_concurrent=self._config.max_concurrent_streams,
            low_memory_mb=self._config.low_memory_threshold_mb,
            memory_probe=memory_probe,
        )
        self._shutdown = ShutdownCoordinator(
            self._registry, grace_period=self._config.stop_grace_period
        )
        self._retry_policy = RetryPolicy(
            max_attempts=self._config.max_retries,
            base_delay=self._config.retry_base_delay,
            max_delay=self._config.retry_max_delay,
        )
        self._prober = prober or EncodeStrategyProber(
            ffprobe_path=resolve_tool("ffprobe", self._tools.ffprobe),
            timeout=self._config.probe_timeout,
        )
        self._ffmpeg_path = resolve_tool("ffmpeg", self._tools.ffmpeg)
        self._launcher = launcher
        self._sleep = sleep
        self._rng = rng

        self._quality = self._config.default_quality
        self._quality_lock = threading.Lock()
        self._handles: dict[str, SupervisorHandle] = {}
        self._results: OrderedDict[str, SupervisorResult] = OrderedDict()
        self._handles_lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: RtmpcastConfig, state: StateSynchronizer | None = None
    ) -> StreamManager:
        """Build a manager from a full RtmpcastConfig."""
        return cls(config.streaming, config.tools, state)

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def max_streams(self) -> int:
        return self._admission.max_concurrent

    # Quality

    @property
    def current_quality(self) -> QualityLevel:
        with self._quality_lock:
            return self._quality

    def set_quality(self, level: QualityLevel | str) -> QualityLevel:
        """Change the process-wide quality.

        Running jobs pick the new level up at their next segment; the
        segment currently playing is not restarted.

        Raises:
            ValueError: If level is not a known quality name.
        """
        quality = QualityLevel.parse(level)
        with self._quality_lock:
            previous, self._quality = self._quality, quality
        if previous is not quality:
            logger.info("Quality changed from %s to %s", previous.value, quality.value)
        return quality

    # Lifecycle

    def start(self, descriptor: JobDescriptor) -> SupervisorHandle:
        """Admit a job and start its supervisor thread.

        Returns as soon as the thread is running.

        Raises:
            EmptyPlaylistError: If the descriptor has no videos.
            AdmissionDenied: If the job is already running, the ceiling is
                reached, or ffmpeg is unavailable.
        """
        if not descriptor.videos:
            raise EmptyPlaylistError(f"Stream {descriptor.job_id} has no videos")

        job_id = descriptor.job_id
        self._admission.check(job_id)

        run_id = new_run_id()
        supervisor = StreamSupervisor(
            descriptor,
            self._registry,
            run_id,
            self._state,
            self._prober,
            quality_provider=lambda: self.current_quality,
            retry_policy=self._retry_policy,
            ffmpeg_path=self._ffmpeg_path,
            segment_pause=self._config.segment_pause,
            grace_period=self._shutdown.grace_period,
            launcher=self._launcher,
            sleep=self._sleep,
            rng=self._rng,
        )

        # Shuffled modes may not start with the first listed video
        first_video = supervisor.first_video.filename

        # Insert-if-absent with capacity settles races between admissions
        record = RunningJobRecord(run_id=run_id, current_video=first_video)
        with self._registry.persistence_lock:
            if not self._registry.register(
                job_id, record, capacity=self.max_streams
            ):
                reason = (
                    AdmissionReason.DUPLICATE
                    if job_id in self._registry
                    else AdmissionReason.CAPACITY
                )
                raise AdmissionDenied(job_id, reason)

            self._state.set_streaming(job_id, True)
            self._state.set_current_video(job_id, first_video)
            self._state.append_audit_event(
                job_id,
                AuditAction.STARTED,
                f"Stream started with {len(descriptor.videos)} video(s) "
                f"in {descriptor.mode.name} mode",
            )

        handle = SupervisorHandle(supervisor, run_id, on_finish=self._release)
        with self._handles_lock:
            self._handles[job_id] = handle
            self._results.pop(job_id, None)
        handle.start()
        logger.info("Stream %s started (%s)", job_id, descriptor.mode.name)
        return handle

    def stop(self, job_id: str) -> bool:
        """Stop a job and wait briefly for its supervisor to record it.

        Stopping a job that is not running is a no-op.

        Returns:
            True if a running job was stopped.
        """
        stopped = self._shutdown.stop(job_id)
        if not stopped:
            return False

        with self._handles_lock:
            handle = self._handles.get(job_id)
        if handle is not None:
            handle.join(timeout=self._shutdown.grace_period)
            if handle.is_alive():
                logger.debug(
                    "Supervisor for %s still winding down after stop", job_id
                )
        return True

    def stop_all(self) -> list[str]:
        """Stop every running job.

        Returns:
            Ids of the jobs that were stopped.
        """
        job_ids = self._registry.job_ids()
        if job_ids:
            logger.info("Stopping %d stream(s)", len(job_ids))
        return [job_id for job_id in job_ids if self.stop(job_id)]

    def wait(self, job_id: str, timeout: float | None = None) -> SupervisorResult | None:
        """Wait for a job's supervisor to finish.

        Returns:
            The supervisor's result, or None if the job is unknown or still
            running when the timeout expires.
        """
        with self._handles_lock:
            handle = self._handles.get(job_id)
            if handle is None:
                return self._results.get(job_id)
        return handle.join(timeout)

    def _release(self, handle: SupervisorHandle) -> None:
        """Drop a finished supervisor, keeping only its result."""
        result = handle.result
        with self._handles_lock:
            if self._handles.get(handle.job_id) is not handle:
                return
            del self._handles[handle.job_id]
            if result is not None:
                self._results[handle.job_id] = result
                self._results.move_to_end(handle.job_id)
                while len(self._results) > RESULT_HISTORY:
                    self._results.popitem(last=False)

    # Reporting

    def running_jobs(self) -> list[str]:
        return self._registry.job_ids()

    def supervised_jobs(self) -> list[str]:
        """Ids of jobs whose supervisor thread has not finished yet."""
        with self._handles_lock:
            return list(self._handles)

    def job_info(self, job_id: str) -> JobSnapshot | None:
        return self._registry.snapshot(job_id)

    def status(self) -> StatusReport:
        """Report active streams, capacity, memory, quality and ffmpeg state."""
        return StatusReport(
            active_streams=len(self._registry),
            max_streams=self.max_streams,
            available_memory_mb=self._memory_probe(),
            current_quality=self.current_quality,
            ffmpeg_available=self._encoder_available(),
        )

    def reconcile(self, persisted_streaming_ids: Iterable[str]) -> list[str]:
        """Correct stored streaming flags that no running job backs.

        Args:
            persisted_streaming_ids: Jobs the store believes are live.

        Returns:
            Ids whose stored state was reset.
        """
        corrected = []
        for job_id in persisted_streaming_ids:
            if job_id in self._registry:
                continue
            self._state.set_streaming(job_id, False)
            self._state.set_current_video(job_id, None)
            corrected.append(job_id)
        if corrected:
            logger.info(
                "Reset %d stale stream status(es): %s",
                len(corrected),
                ", ".join(corrected),
            )
        return corrected
