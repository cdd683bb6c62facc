"""Job records, typed job payloads and the pure job state machine.

Transition helpers never mutate their input; they return an updated copy so
stores can apply them with a compare-and-swap on the previous status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidTransition
from .schemas import _WireModel

JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]

JOB_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed", "cancelled")
ACTIVE_STATUSES: tuple[str, ...] = ("processing",)
TERMINAL_STATUSES: tuple[str, ...] = ("completed", "failed", "cancelled")

KNOWN_JOB_KINDS: tuple[str, ...] = (
    "render-scene",
    "tts",
    "music",
    "sound-effect",
    "image-generation",
    "video-generation",
    "upscale",
    "lipsync",
    "final-assembly",
)

# names emitted by older manifest builders
JOB_TYPE_ALIASES: Dict[str, str] = {
    "render_scene": "render-scene",
    "generate_image": "image-generation",
    "generate_video": "video-generation",
    "generate_music": "music",
    "music-generation": "music",
    "sfx": "sound-effect",
    "sound_effect": "sound-effect",
    "lip_sync": "lipsync",
    "lip-sync": "lipsync",
    "render_shotstack": "final-assembly",
    "final_assembly": "final-assembly",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_job_type(value: str) -> str:
    token = (value or "").strip()
    return JOB_TYPE_ALIASES.get(token, token)


class _Payload(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class RenderScenePayload(_Payload):
    kind: Literal["render-scene"] = "render-scene"
    scene_id: str


class TTSPayload(_Payload):
    kind: Literal["tts"] = "tts"
    text: str = Field(..., min_length=1)
    scene_id: Optional[str] = None
    provider: Optional[str] = None
    voice_id: Optional[str] = None
    format: Optional[str] = None


class MusicPayload(_Payload):
    kind: Literal["music"] = "music"
    cue_id: Optional[str] = None
    mood: Optional[str] = None
    duration_sec: Optional[float] = Field(default=None, gt=0)
    instructions: Optional[str] = None


class SoundEffectPayload(_Payload):
    kind: Literal["sound-effect"] = "sound-effect"
    name: str
    scene_id: Optional[str] = None
    description: Optional[str] = None


class ImageGenerationPayload(_Payload):
    kind: Literal["image-generation"] = "image-generation"
    prompt: str = Field(..., min_length=1)
    result_asset_id: Optional[str] = None
    scene_id: Optional[str] = None
    model: Optional[str] = None
    resolution: Optional[str] = None


class VideoGenerationPayload(_Payload):
    kind: Literal["video-generation"] = "video-generation"
    prompt: str = Field(..., min_length=1)
    result_asset_id: Optional[str] = None
    source_asset_id: Optional[str] = None
    scene_id: Optional[str] = None
    duration_sec: Optional[float] = Field(default=None, gt=0)


class UpscalePayload(_Payload):
    kind: Literal["upscale"] = "upscale"
    asset_id: str
    factor: float = Field(default=2.0, gt=1)


class LipsyncPayload(_Payload):
    kind: Literal["lipsync"] = "lipsync"
    scene_id: str
    audio_job_id: Optional[str] = None


class FinalAssemblyPayload(_Payload):
    kind: Literal["final-assembly"] = "final-assembly"
    manifest_id: Optional[str] = None
    callback_url: Optional[str] = None


class ExtensionPayload(_Payload):
    """Payload of a job kind this package does not model; fields kept as-is."""

    kind: Literal["extension"] = "extension"


JobPayload = Annotated[
    Union[
        RenderScenePayload,
        TTSPayload,
        MusicPayload,
        SoundEffectPayload,
        ImageGenerationPayload,
        VideoGenerationPayload,
        UpscalePayload,
        LipsyncPayload,
        FinalAssemblyPayload,
        ExtensionPayload,
    ],
    Field(discriminator="kind"),
]


def tag_payload(data: Any) -> Any:
    """Canonicalize ``type`` and tag ``payload`` with its union discriminator."""

    if not isinstance(data, dict):
        return data
    data = dict(data)
    job_type = canonical_job_type(str(data.get("type") or ""))
    if job_type:
        data["type"] = job_type
    payload = data.get("payload")
    if payload is None:
        payload = {}
    if isinstance(payload, dict):
        payload = dict(payload)
        payload["kind"] = job_type if job_type in KNOWN_JOB_KINDS else "extension"
        data["payload"] = payload
    return data


class Job(_WireModel):
    """Durable audit record of one unit of production work."""

    id: str = Field(..., min_length=1)
    brief_id: str
    type: str = Field(..., min_length=1)
    payload: JobPayload
    status: JobStatus = "pending"
    priority: int = 0
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    worker_id: Optional[str] = None
    not_before: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _tag(cls, data: Any) -> Any:
        return tag_payload(data)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def ready(self, now: Optional[datetime] = None) -> bool:
        if self.status != "pending":
            return False
        return self.not_before is None or self.not_before <= (now or utcnow())

    def duration_s(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return max((self.completed_at - self.started_at).total_seconds(), 0.0)


def claim_job(job: Job, worker_id: str, *, now: Optional[datetime] = None) -> Job:
    now = now or utcnow()
    if job.status != "pending":
        raise InvalidTransition(f"job {job.id} cannot be claimed from {job.status}")
    return job.model_copy(
        update={
            "status": "processing",
            "attempts": job.attempts + 1,
            "started_at": now,
            "updated_at": now,
            "worker_id": worker_id,
            "not_before": None,
        }
    )


def complete_job(job: Job, result: Optional[Dict[str, Any]] = None, *, now: Optional[datetime] = None) -> Job:
    now = now or utcnow()
    if job.status != "processing":
        raise InvalidTransition(f"job {job.id} cannot complete from {job.status}")
    return job.model_copy(
        update={
            "status": "completed",
            "result": dict(result or {}),
            "error": None,
            "completed_at": now,
            "updated_at": now,
        }
    )


def fail_job(
    job: Job,
    error: str,
    *,
    retryable: bool = True,
    backoff_s: float = 0.0,
    now: Optional[datetime] = None,
) -> Job:
    """Record a failed attempt.

    A retryable failure with attempts left puts the job back to ``pending``
    with ``not_before`` pushed out by ``backoff_s``. Everything else is
    terminal ``failed``; the last error is always kept.
    """

    now = now or utcnow()
    if job.status != "processing":
        raise InvalidTransition(f"job {job.id} cannot fail from {job.status}")
    if retryable and job.attempts < job.max_attempts:
        return job.model_copy(
            update={
                "status": "pending",
                "error": error,
                "updated_at": now,
                "worker_id": None,
                "not_before": now + timedelta(seconds=max(backoff_s, 0.0)) if backoff_s > 0 else None,
            }
        )
    return job.model_copy(
        update={
            "status": "failed",
            "error": error,
            "completed_at": now,
            "updated_at": now,
            "not_before": None,
        }
    )


def cancel_job(job: Job, reason: str = "cancelled", *, now: Optional[datetime] = None) -> Job:
    now = now or utcnow()
    if job.status not in ("pending", "processing"):
        raise InvalidTransition(f"job {job.id} cannot be cancelled from {job.status}")
    return job.model_copy(
        update={
            "status": "cancelled",
            "error": reason,
            "completed_at": now,
            "updated_at": now,
            "not_before": None,
        }
    )


class JobStats(_WireModel):
    """Aggregate over all jobs of one (type, status) pair."""

    type: str
    status: JobStatus
    count: int
    average_duration_s: Optional[float] = None
    max_attempts_observed: int = 0


def compute_stats(jobs: Iterable[Job]) -> List[JobStats]:
    buckets: Dict[tuple[str, str], List[Job]] = {}
    for job in jobs:
        buckets.setdefault((job.type, job.status), []).append(job)
    stats: List[JobStats] = []
    for (job_type, status), members in sorted(buckets.items()):
        durations = [d for d in (job.duration_s() for job in members) if d is not None]
        stats.append(
            JobStats(
                type=job_type,
                status=status,  # type: ignore[arg-type]
                count=len(members),
                average_duration_s=(sum(durations) / len(durations)) if durations else None,
                max_attempts_observed=max(job.attempts for job in members),
            )
        )
    return stats


BriefStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]


class BriefProgress(_WireModel):
    """Production status of a brief, derived from its jobs when read."""

    brief_id: str
    status: BriefStatus
    total: int
    completed: int
    counts: Dict[str, int] = Field(default_factory=dict)
    last_error: Optional[str] = None


def compute_brief_progress(brief_id: str, jobs: Iterable[Job]) -> BriefProgress:
    """Aggregate job statuses into one brief status.

    Any failed job fails the brief. A brief is completed only when every job
    completed, and cancelled when every job is terminal with at least one
    cancellation. It stays pending until some job leaves pending.
    """

    members = list(jobs)
    counts: Dict[str, int] = {}
    for job in members:
        counts[job.status] = counts.get(job.status, 0) + 1
    total = len(members)
    if counts.get("failed"):
        status = "failed"
    elif counts.get("completed", 0) == total:
        status = "completed"
    elif all(job.terminal for job in members):
        status = "cancelled"
    elif counts.get("pending", 0) == total:
        status = "pending"
    else:
        status = "processing"
    errored = [job for job in members if job.error]
    last_error = max(errored, key=lambda job: job.updated_at).error if errored else None
    return BriefProgress(
        brief_id=brief_id,
        status=status,  # type: ignore[arg-type]
        total=total,
        completed=counts.get("completed", 0),
        counts=counts,
        last_error=last_error,
    )
    return stats


@dataclass(frozen=True)
class PipelineStep:
    kind: str
    priority: int


_PIPELINES: Dict[str, tuple[str, ...]] = {
    "video": ("analysis", "asset_prep", "video_generation", "render"),
    "image": ("analysis", "asset_prep", "image_processing", "render"),
    "audio": ("analysis", "asset_prep", "render"),
    "mix": ("analysis", "asset_prep", "video_generation", "render"),
}
_PIPELINE_PRIORITY_STEP = 10


def pipeline_for_intent(intent: str) -> List[PipelineStep]:
    """Default job kinds for a brief; later steps get higher priority."""

    kinds = _PIPELINES.get(intent, _PIPELINES["mix"])
    return [PipelineStep(kind=kind, priority=(index + 1) * _PIPELINE_PRIORITY_STEP) for index, kind in enumerate(kinds)]


__all__ = [
    "JobStatus",
    "JOB_STATUSES",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "KNOWN_JOB_KINDS",
    "JOB_TYPE_ALIASES",
    "JobPayload",
    "RenderScenePayload",
    "TTSPayload",
    "MusicPayload",
    "SoundEffectPayload",
    "ImageGenerationPayload",
    "VideoGenerationPayload",
    "UpscalePayload",
    "LipsyncPayload",
    "FinalAssemblyPayload",
    "ExtensionPayload",
    "Job",
    "JobStats",
    "BriefStatus",
    "BriefProgress",
    "PipelineStep",
    "canonical_job_type",
    "tag_payload",
    "claim_job",
    "complete_job",
    "fail_job",
    "cancel_job",
    "compute_stats",
    "compute_brief_progress",
    "pipeline_for_intent",
    "utcnow",
]
