from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from . import telemetry
from .errors import JobExecutionError, JobTransientError
from .job_queue import JobQueue
from .jobs import Job

LOG = logging.getLogger(__name__)

HandlerResult = Optional[Mapping[str, Any]]
Handler = Callable[[Job], Union[HandlerResult, Awaitable[HandlerResult]]]


class JobWorker:
    """Claims jobs from a queue and runs the handler registered for their type.

    Handlers signal a recoverable failure with `JobTransientError` and a
    terminal one with `JobPermanentError`. Any other exception is treated as
    recoverable; the queue decides between retry and terminal failure from
    the job's attempt count.
    """

    def __init__(
        self,
        queue: JobQueue,
        *,
        worker_id: Optional[str] = None,
        handlers: Optional[Mapping[str, Handler]] = None,
        default_handler: Optional[Handler] = None,
        poll_interval_s: float = 1.0,
        job_timeout_s: Optional[float] = None,
    ) -> None:
        self.queue = queue
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._handlers: Dict[str, Handler] = dict(handlers or {})
        self._default_handler = default_handler
        self.poll_interval_s = poll_interval_s
        self.job_timeout_s = job_timeout_s
        self._stop = asyncio.Event()

    def register(self, job_type: str, handler: Handler) -> None:
        self._handlers[job_type] = handler

    def handler_for(self, job_type: str) -> Optional[Handler]:
        return self._handlers.get(job_type, self._default_handler)

    async def run_once(self) -> Optional[Job]:
        """Claim and execute one job; returns its post-transition record or None."""

        job = self.queue.claim_next(self.worker_id)
        if job is None:
            return None
        handler = self.handler_for(job.type)
        if handler is None:
            return self.queue.fail(job, f"no handler registered for job type {job.type!r}", retryable=False)
        try:
            result = await self._call(handler, job)
        except JobExecutionError as exc:
            LOG.warning(
                "job %s attempt %d failed: %s",
                job.id,
                job.attempts,
                exc,
                extra={"job_id": job.id, "worker_id": self.worker_id, "retryable": exc.retryable},
            )
            return self.queue.fail(job, str(exc) or type(exc).__name__, retryable=exc.retryable)
        except Exception as exc:
            LOG.exception("job %s handler raised unexpectedly", job.id, extra={"job_id": job.id})
            return self.queue.fail(job, f"{type(exc).__name__}: {exc}", retryable=True)
        return self.queue.complete(job, _coerce_result(result))

    async def drain(self, max_jobs: Optional[int] = None) -> List[Job]:
        """Run jobs until none is ready to claim."""

        processed: List[Job] = []
        while max_jobs is None or len(processed) < max_jobs:
            job = await self.run_once()
            if job is None:
                break
            processed.append(job)
        return processed

    async def run_forever(self) -> int:
        """Poll the queue until `stop()` is called; returns the number of jobs run."""

        self._stop.clear()
        count = 0
        telemetry.emit_event("worker.started", {"worker_id": self.worker_id})
        while not self._stop.is_set():
            job = await self.run_once()
            if job is not None:
                count += 1
                continue
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval_s)
            except asyncio.TimeoutError:
                pass
        telemetry.emit_event("worker.stopped", {"worker_id": self.worker_id, "jobs": count})
        return count

    def stop(self) -> None:
        self._stop.set()

    async def _call(self, handler: Handler, job: Job) -> HandlerResult:
        task = asyncio.ensure_future(_invoke(handler, job))
        if not self.job_timeout_s:
            return await task
        try:
            done, _ = await asyncio.wait({task}, timeout=self.job_timeout_s)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            # a sync handler keeps running in its thread; only the job is released
            task.cancel()
            raise JobTransientError(f"timed out after {self.job_timeout_s}s")
        return task.result()


async def _invoke(handler: Handler, job: Job) -> HandlerResult:
    if inspect.iscoroutinefunction(handler):
        outcome = handler(job)
    else:
        outcome = await asyncio.to_thread(handler, job)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


def _coerce_result(result: Any) -> Dict[str, Any]:
    if result is None:
        return {}
    if isinstance(result, Mapping):
        return dict(result)
    return {"value": result}


__all__ = ["JobWorker", "Handler"]
