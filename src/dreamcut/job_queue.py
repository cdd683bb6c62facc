from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from . import telemetry
from .errors import UnknownBriefError, UnknownJobError
from .jobs import (
    ACTIVE_STATUSES,
    BriefProgress,
    Job,
    JobStats,
    cancel_job,
    claim_job,
    complete_job,
    compute_brief_progress,
    compute_stats,
    fail_job,
    utcnow,
)
from .manifest import ProductionManifest, jobs_from_manifest
from .retry import BackoffPolicy

LOG = logging.getLogger(__name__)


def claim_order(job: Job, seq: int = 0) -> tuple[int, datetime, int]:
    """Sort key: higher priority first, then oldest, then insertion order."""
    return (-job.priority, job.created_at, seq)


class JobStore(Protocol):
    """Durable job storage.

    `claim_next` must pick and transition a job atomically. `replace`
    is a compare-and-swap on (status, attempts) of the stored record.
    """

    def insert(self, jobs: Sequence[Job]) -> None:
        ...

    def get(self, job_id: str) -> Optional[Job]:
        ...

    def claim_next(self, worker_id: str, now: datetime) -> Optional[Job]:
        ...

    def replace(self, job: Job, *, expected_status: str, expected_attempts: int) -> bool:
        ...

    def list(self, statuses: Optional[Sequence[str]] = None, brief_id: Optional[str] = None) -> List[Job]:
        ...


class InMemoryJobStore:
    """Process-local store guarded by a single re-entrant lock."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._seq: Dict[str, int] = {}
        self._lock = threading.RLock()

    def insert(self, jobs: Sequence[Job]) -> None:
        with self._lock:
            for job in jobs:
                if job.id in self._jobs:
                    raise ValueError(f"job {job.id!r} already exists")
            for job in jobs:
                self._seq[job.id] = len(self._seq)
                self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def claim_next(self, worker_id: str, now: datetime) -> Optional[Job]:
        with self._lock:
            ready = [job for job in self._jobs.values() if job.ready(now)]
            if not ready:
                return None
            best = min(ready, key=lambda job: claim_order(job, self._seq[job.id]))
            claimed = claim_job(best, worker_id, now=now)
            self._jobs[best.id] = claimed
            return claimed

    def replace(self, job: Job, *, expected_status: str, expected_attempts: int) -> bool:
        with self._lock:
            current = self._jobs.get(job.id)
            if current is None:
                raise UnknownJobError(job.id)
            if current.status != expected_status or current.attempts != expected_attempts:
                return False
            self._jobs[job.id] = job
            return True

    def list(self, statuses: Optional[Sequence[str]] = None, brief_id: Optional[str] = None) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        if statuses is not None:
            jobs = [job for job in jobs if job.status in statuses]
        if brief_id is not None:
            jobs = [job for job in jobs if job.brief_id == brief_id]
        return jobs


class JobQueue:
    """Priority job queue over a `JobStore`.

    Every transition is applied with a compare-and-swap so a worker that lost
    its job (cancelled, or re-queued and claimed elsewhere) cannot overwrite
    the newer state.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        *,
        backoff: Optional[BackoffPolicy] = None,
        default_max_attempts: int = 3,
    ) -> None:
        self.store: JobStore = store if store is not None else InMemoryJobStore()
        self.backoff = backoff or BackoffPolicy()
        self.default_max_attempts = default_max_attempts

    def enqueue(self, jobs: Iterable[Job]) -> List[Job]:
        batch = list(jobs)
        for job in batch:
            if job.status != "pending" or job.attempts:
                raise ValueError(f"job {job.id!r} must be enqueued as a fresh pending record")
        self.store.insert(batch)
        for job in batch:
            telemetry.emit_event(
                "job.enqueued",
                {"job_id": job.id, "brief_id": job.brief_id, "type": job.type, "priority": job.priority},
            )
        LOG.info("enqueued %d jobs", len(batch))
        return batch

    def submit_manifest(self, manifest: ProductionManifest, *, brief_id: Optional[str] = None) -> List[Job]:
        return self.enqueue(jobs_from_manifest(manifest, brief_id=brief_id, max_attempts=self.default_max_attempts))

    def claim_next(self, worker_id: str, *, now: Optional[datetime] = None) -> Optional[Job]:
        job = self.store.claim_next(worker_id, now or utcnow())
        if job is not None:
            LOG.debug("job claimed", extra={"job_id": job.id, "worker_id": worker_id, "attempt": job.attempts})
            telemetry.emit_event(
                "job.claimed",
                {"job_id": job.id, "worker_id": worker_id, "attempt": job.attempts, "type": job.type},
            )
        return job

    def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> Job:
        updated = complete_job(job, result)
        return self._apply(job, updated, "job.completed")

    def fail(self, job: Job, error: str, *, retryable: bool = True) -> Job:
        delay = self.backoff.delay_for(job.attempts) if retryable else 0.0
        updated = fail_job(job, error, retryable=retryable, backoff_s=delay)
        event = "job.retry_scheduled" if updated.status == "pending" else "job.failed"
        return self._apply(job, updated, event)

    def cancel(self, job_id: str, reason: str = "cancelled by caller") -> bool:
        while True:
            current = self.get(job_id)
            if current.terminal:
                return False
            updated = cancel_job(current, reason)
            if self.store.replace(updated, expected_status=current.status, expected_attempts=current.attempts):
                LOG.info("job cancelled", extra={"job_id": job_id, "reason": reason})
                telemetry.emit_event("job.cancelled", {"job_id": job_id, "reason": reason})
                return True

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        return job

    def list_pending(self) -> List[Job]:
        pending = self.store.list(statuses=("pending",))
        return sorted(pending, key=lambda job: claim_order(job))

    def list_active(self) -> List[Job]:
        return sorted(self.store.list(statuses=ACTIVE_STATUSES), key=lambda job: job.started_at or job.created_at)

    def jobs_for_brief(self, brief_id: str) -> List[Job]:
        return sorted(self.store.list(brief_id=brief_id), key=lambda job: job.created_at)

    def brief_progress(self, brief_id: str) -> BriefProgress:
        """Aggregate status of a brief's jobs; read-only, nothing is written back."""
        jobs = self.store.list(brief_id=brief_id)
        if not jobs:
            raise UnknownBriefError(brief_id)
        return compute_brief_progress(brief_id, jobs)

    def stats(self) -> List[JobStats]:
        return compute_stats(self.store.list())

    def _apply(self, previous: Job, updated: Job, event: str) -> Job:
        if self.store.replace(updated, expected_status=previous.status, expected_attempts=previous.attempts):
            payload: Dict[str, Any] = {"job_id": updated.id, "status": updated.status, "attempts": updated.attempts}
            if updated.error:
                payload["error"] = updated.error
            telemetry.emit_event(event, payload)
            return updated
        current = self.get(previous.id)
        LOG.warning(
            "job %s changed underneath worker (now %s); transition dropped",
            previous.id,
            current.status,
            extra={"job_id": previous.id, "worker_id": previous.worker_id},
        )
        return current


__all__ = ["JobStore", "InMemoryJobStore", "JobQueue", "claim_order"]
