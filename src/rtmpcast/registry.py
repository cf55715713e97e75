"""In-memory registry of running stream jobs.

The registry is the only shared mutable state in the supervisor. Every
read and write goes through a single lock. A record exists for a job id
exactly while that job's supervisor believes a process should be running;
removing the record is how a stop is requested and observed.

Records carry the run_id of the supervisor that created them so a
supervisor that is winding down never updates or removes the record of a
newer run of the same job.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import IO, Any, Protocol

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """The subset of subprocess.Popen the supervisor relies on."""

    pid: int
    stdin: IO[Any] | None
    stderr: IO[Any] | None
    returncode: int | None

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int: ...

    def kill(self) -> None: ...


@dataclass
class RunningJobRecord:
    """Mutable state of one running job, owned by the registry."""

    run_id: str
    process: ProcessHandle | None = None
    started_at: float = field(default_factory=time.time)
    """When the current segment's process was launched."""
    playlist_index: int = 0
    current_video: str | None = None
    retry_count: int = 0
    last_error: str | None = None
    segments_started: int = 0


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a RunningJobRecord for reporting."""

    job_id: str
    run_id: str
    pid: int | None
    started_at: float
    playlist_index: int
    current_video: str | None
    retry_count: int
    last_error: str | None
    segments_started: int


class JobRegistry:
    """Lock-guarded map of job id to RunningJobRecord."""

    def __init__(self) -> None:
        self._records: dict[str, RunningJobRecord] = {}
        self._lock = threading.Lock()
        self.persistence_lock = threading.Lock()
        """Held while a run persists its start or terminal state."""

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._records

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def register(
        self,
        job_id: str,
        record: RunningJobRecord,
        capacity: int | None = None,
    ) -> bool:
        """Insert a record if the job is absent and capacity allows.

        Args:
            job_id: Job to register.
            record: Initial record.
            capacity: Maximum number of records; None means unbounded.

        Returns:
            True if inserted, False if the job already has a record or the
            registry is full.
        """
        with self._lock:
            if job_id in self._records:
                return False
            if capacity is not None and len(self._records) >= capacity:
                return False
            self._records[job_id] = record
            return True

    def update(self, job_id: str, run_id: str, **changes: Any) -> bool:
        """Apply field changes to a job's record.

        Returns:
            False if the record is gone or belongs to another run; in that
            case nothing is changed.
        """
        with self._lock:
            record = self._records.get(job_id)
            if record is None or record.run_id != run_id:
                return False
            for name, value in changes.items():
                if not hasattr(record, name) or name == "run_id":
                    raise AttributeError(f"RunningJobRecord has no field {name!r}")
                setattr(record, name, value)
            return True

    def is_active(self, job_id: str, run_id: str) -> bool:
        """True if the job's record exists and belongs to run_id."""
        with self._lock:
            record = self._records.get(job_id)
            return record is not None and record.run_id == run_id

    def remove(self, job_id: str) -> RunningJobRecord | None:
        """Remove and return a job's record, whichever run owns it.

        This is how a stop is requested.
        """
        with self._lock:
            return self._records.pop(job_id, None)

    def release(self, job_id: str, run_id: str) -> bool:
        """Remove run_id's record, if present, and report slot ownership.

        Returns:
            False if another run now owns the job id; True otherwise,
            whether or not a record was removed.
        """
        with self._lock:
            record = self._records.get(job_id)
            if record is None:
                return True
            if record.run_id != run_id:
                return False
            del self._records[job_id]
            return True

    def snapshot(self, job_id: str) -> JobSnapshot | None:
        """Return a read-only copy of a job's record."""
        with self._lock:
            record = self._records.get(job_id)
            if record is None:
                return None
            copy = replace(record)
        return JobSnapshot(
            job_id=job_id,
            run_id=copy.run_id,
            pid=copy.process.pid if copy.process is not None else None,
            started_at=copy.started_at,
            playlist_index=copy.playlist_index,
            current_video=copy.current_video,
            retry_count=copy.retry_count,
            last_error=copy.last_error,
            segments_started=copy.segments_started,
        )
