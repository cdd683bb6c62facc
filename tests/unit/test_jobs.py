from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dreamcut.errors import InvalidTransition
from dreamcut.jobs import (
    ExtensionPayload,
    Job,
    MusicPayload,
    cancel_job,
    canonical_job_type,
    claim_job,
    complete_job,
    compute_brief_progress,
    compute_stats,
    fail_job,
    pipeline_for_intent,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _job(**overrides) -> Job:
    data = {"id": "job-1", "brief_id": "brief-1", "type": "tts", "payload": {"text": "hello"}, "created_at": T0}
    data.update(overrides)
    return Job.model_validate(data)


def test_type_aliases_are_canonicalized_and_payload_tagged() -> None:
    job = _job(type="generate_music", payload={"mood": "calm"})
    assert job.type == "music"
    assert isinstance(job.payload, MusicPayload)
    assert canonical_job_type("lip_sync") == "lipsync"


def test_unknown_type_keeps_payload_as_extension() -> None:
    job = _job(type="custom-step", payload={"anything": [1, 2]})
    assert isinstance(job.payload, ExtensionPayload)
    assert job.wire_dump()["payload"]["anything"] == [1, 2]


def test_claim_increments_attempts_and_records_worker() -> None:
    claimed = claim_job(_job(), "w1", now=T0)
    assert claimed.status == "processing"
    assert claimed.attempts == 1
    assert claimed.worker_id == "w1"
    assert claimed.started_at == T0


def test_transitions_return_copies() -> None:
    original = _job()
    claim_job(original, "w1", now=T0)
    assert original.status == "pending"
    assert original.attempts == 0


def test_complete_records_result_and_duration() -> None:
    claimed = claim_job(_job(), "w1", now=T0)
    done = complete_job(claimed, {"url": "s3://out.wav"}, now=T0 + timedelta(seconds=4))
    assert done.status == "completed"
    assert done.result == {"url": "s3://out.wav"}
    assert done.duration_s() == 4.0
    assert done.terminal


def test_retryable_failure_returns_to_pending_with_backoff() -> None:
    claimed = claim_job(_job(max_attempts=3), "w1", now=T0)
    retried = fail_job(claimed, "provider busy", retryable=True, backoff_s=2.0, now=T0)
    assert retried.status == "pending"
    assert retried.error == "provider busy"
    assert retried.not_before == T0 + timedelta(seconds=2)
    assert not retried.ready(T0 + timedelta(seconds=1))
    assert retried.ready(T0 + timedelta(seconds=2))


def test_failure_is_terminal_exactly_at_max_attempts() -> None:
    job = _job(max_attempts=3)
    statuses = []
    for _ in range(3):
        job = fail_job(claim_job(job, "w1", now=T0), "boom", retryable=True, now=T0)
        statuses.append((job.attempts, job.status))
    assert statuses == [(1, "pending"), (2, "pending"), (3, "failed")]
    with pytest.raises(InvalidTransition):
        claim_job(job, "w1")


def test_permanent_failure_is_terminal_immediately() -> None:
    failed = fail_job(claim_job(_job(max_attempts=5), "w1", now=T0), "bad input", retryable=False, now=T0)
    assert failed.status == "failed"
    assert failed.attempts == 1


@pytest.mark.parametrize("status", ["completed", "failed", "cancelled"])
def test_terminal_jobs_cannot_be_cancelled(status: str) -> None:
    with pytest.raises(InvalidTransition):
        cancel_job(_job(status=status))


def test_cancel_from_processing() -> None:
    cancelled = cancel_job(claim_job(_job(), "w1", now=T0), "user abort", now=T0)
    assert cancelled.status == "cancelled"
    assert cancelled.error == "user abort"


def test_complete_requires_processing() -> None:
    with pytest.raises(InvalidTransition):
        complete_job(_job())


def test_stats_group_by_type_and_status() -> None:
    done = complete_job(claim_job(_job(id="a"), "w", now=T0), now=T0 + timedelta(seconds=2))
    done_slow = complete_job(claim_job(_job(id="b"), "w", now=T0), now=T0 + timedelta(seconds=6))
    pending = _job(id="c", type="upscale", payload={"assetId": "a1"})
    stats = compute_stats([done, done_slow, pending])
    assert [(s.type, s.status, s.count) for s in stats] == [("tts", "completed", 2), ("upscale", "pending", 1)]
    assert stats[0].average_duration_s == 4.0
    assert stats[1].average_duration_s is None
    assert stats[0].wire_dump()["averageDurationS"] == 4.0


def test_pipeline_priorities_increase_by_step() -> None:
    steps = pipeline_for_intent("image")
    assert [step.kind for step in steps] == ["analysis", "asset_prep", "image_processing", "render"]
    assert [step.priority for step in steps] == [10, 20, 30, 40]
    assert [s.kind for s in pipeline_for_intent("unknown")] == [s.kind for s in pipeline_for_intent("mix")]


@pytest.mark.parametrize(
    "statuses, expected",
    [
        (["pending", "pending"], "pending"),
        (["completed", "pending"], "processing"),
        (["processing", "pending"], "processing"),
        (["completed", "completed"], "completed"),
        (["completed", "cancelled"], "cancelled"),
        (["completed", "failed", "pending"], "failed"),
    ],
)
def test_brief_status_is_derived_from_job_statuses(statuses, expected) -> None:
    jobs = [_job(id=f"job-{n}", status=status) for n, status in enumerate(statuses)]
    progress = compute_brief_progress("brief-1", jobs)
    assert progress.status == expected
    assert progress.total == len(statuses)
    assert progress.completed == statuses.count("completed")


def test_brief_progress_reports_most_recent_error() -> None:
    jobs = [
        _job(id="job-1", status="failed", error="render crashed", updated_at=T0 + timedelta(seconds=5)),
        _job(id="job-2", status="pending", error="provider busy", updated_at=T0 + timedelta(seconds=1)),
        _job(id="job-3", status="completed"),
    ]
    progress = compute_brief_progress("brief-1", jobs)
    assert progress.last_error == "render crashed"
    assert progress.counts == {"failed": 1, "pending": 1, "completed": 1}
    assert progress.wire_dump()["lastError"] == "render crashed"
