"""Production manifest models, structural validation and job extraction."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationIssue, issues_from_pydantic
from .jobs import Job, JobPayload, pipeline_for_intent, tag_payload
from .schemas import Intent, _WireModel

LOG = logging.getLogger(__name__)

VisualType = Literal["user-supplied", "generated"]

_VISUAL_TYPE_ALIASES = {
    "user_asset": "user-supplied",
    "user-asset": "user-supplied",
    "user": "user-supplied",
    "user_supplied": "user-supplied",
    "ai_generated": "generated",
    "ai-generated": "generated",
}


def normalize_visual_type(value: Any) -> Any:
    if isinstance(value, str):
        token = value.strip().lower()
        return _VISUAL_TYPE_ALIASES.get(token, token)
    return value


class _OpenModel(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ManifestMetadata(_OpenModel):
    intent: Intent = "video"
    duration_seconds: float = Field(..., ge=1, allow_inf_nan=False)
    aspect_ratio: str = "16:9"
    platform: Optional[str] = None
    language: str = "en"
    profile: Optional[str] = None
    priority: Optional[str] = None
    voice_gender: Optional[str] = None
    cinematic_level: Optional[str] = None


class SourceRefs(_OpenModel):
    brief_id: Optional[str] = None
    analyzer_ref: Optional[str] = None
    refiner_ref: Optional[str] = None
    script_ref: Optional[str] = None


class CropRect(_WireModel):
    x: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    y: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    width: float = Field(..., gt=0, allow_inf_nan=False)
    height: float = Field(..., gt=0, allow_inf_nan=False)


class VisualTransform(_WireModel):
    scale: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    crop: Optional[CropRect] = None
    rotation_deg: Optional[float] = Field(default=None, allow_inf_nan=False)


class ShotDescriptor(_OpenModel):
    camera: Optional[str] = None
    focal: Optional[str] = None


class SceneVisual(_OpenModel):
    type: VisualType = "user-supplied"
    asset_id: str = Field(..., min_length=1)
    transform: Optional[VisualTransform] = None
    shot: Optional[ShotDescriptor] = None

    @field_validator("type", mode="before")
    @classmethod
    def _alias_type(cls, value: Any) -> Any:
        return normalize_visual_type(value)


class TTSConfig(_OpenModel):
    provider: str = "elevenlabs"
    voice_id: Optional[str] = None
    style: Optional[str] = None
    stability: Optional[float] = Field(default=None, ge=0, le=1, allow_inf_nan=False)
    similarity_boost: Optional[float] = Field(default=None, ge=0, le=1, allow_inf_nan=False)
    sample_rate: Optional[int] = Field(default=None, gt=0)
    format: Optional[str] = None


class MusicDescriptor(_OpenModel):
    style: Optional[str] = None
    mood: Optional[str] = None
    cue_map: Dict[str, Any] = Field(default_factory=dict)
    global_volume_duck_to_voices: bool = True


class ManifestAudio(_OpenModel):
    tts_defaults: TTSConfig = Field(default_factory=TTSConfig)
    narration_overrides: Dict[str, TTSConfig] = Field(default_factory=dict)
    music: Optional[MusicDescriptor] = None
    sfx: List[Dict[str, Any]] = Field(default_factory=list)


class AssetDescriptor(_OpenModel):
    id: Optional[str] = None
    source: Optional[str] = None
    origin_url: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None


class ScenePlan(_OpenModel):
    id: str = Field(..., min_length=1)
    start_at_sec: float = Field(..., ge=0, allow_inf_nan=False)
    duration_seconds: float = Field(..., ge=0.05, allow_inf_nan=False)
    purpose: str = ""
    narration: Optional[str] = None
    language: Optional[str] = None
    tts: Optional[TTSConfig] = None
    music_cue: Optional[str] = None
    visual_anchor: Optional[str] = None
    visuals: List[SceneVisual] = Field(..., min_length=1)

    @property
    def end_at_sec(self) -> float:
        return self.start_at_sec + self.duration_seconds


class ManifestJob(_OpenModel):
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    payload: JobPayload
    priority: int = 0
    depends_on: List[str] = Field(default_factory=list)
    max_attempts: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _tag(cls, data: Any) -> Any:
        return tag_payload(data)


class ProductionManifest(_OpenModel):
    """Validated production plan.

    Construct through `validate_manifest`, which also enforces the asset
    reference and uniqueness rules that span several fields.
    """

    id: Optional[str] = None
    created_at: Optional[str] = None
    user_id: Optional[str] = None
    source_refs: SourceRefs = Field(default_factory=SourceRefs)
    metadata: ManifestMetadata
    scenes: List[ScenePlan] = Field(..., min_length=1)
    assets: Dict[str, AssetDescriptor] = Field(default_factory=dict)
    audio: ManifestAudio = Field(default_factory=ManifestAudio)
    visuals: Dict[str, Any] = Field(default_factory=dict)
    effects: Dict[str, Any] = Field(default_factory=dict)
    consistency: Dict[str, Any] = Field(default_factory=dict)
    jobs: List[ManifestJob] = Field(default_factory=list)


def validate_manifest(candidate: Any) -> Union[ProductionManifest, List[ValidationIssue]]:
    """Validate a manifest candidate.

    Returns the parsed manifest, or every structural problem found as a list
    of field-qualified issues. Never raises for any input shape; overlapping
    or gapped scenes are not structural problems.
    """

    if isinstance(candidate, ProductionManifest):
        candidate = candidate.model_dump(mode="json", by_alias=True)
    if not isinstance(candidate, Mapping):
        return [ValidationIssue("<root>", f"manifest must be an object, got {type(candidate).__name__}")]

    issues: List[ValidationIssue] = []
    manifest: Optional[ProductionManifest] = None
    try:
        manifest = ProductionManifest.model_validate(dict(candidate))
    except PydanticValidationError as exc:
        issues.extend(issues_from_pydantic(exc))
    issues.extend(_cross_reference_issues(candidate))

    if issues or manifest is None:
        return _dedupe(issues)
    return manifest


def timeline_warnings(manifest: ProductionManifest) -> List[ValidationIssue]:
    """Scenes ending after ``metadata.durationSeconds``; advisory only."""

    limit = manifest.metadata.duration_seconds
    warnings: List[ValidationIssue] = []
    for index, scene in enumerate(manifest.scenes):
        if scene.end_at_sec > limit + 1e-9:
            warnings.append(
                ValidationIssue(
                    f"scenes.{index}",
                    f"scene {scene.id!r} ends at {scene.end_at_sec:g}s, past the manifest duration of {limit:g}s",
                    severity="warning",
                )
            )
    return warnings


def jobs_from_manifest(
    manifest: ProductionManifest,
    *,
    brief_id: Optional[str] = None,
    max_attempts: int = 3,
) -> List[Job]:
    """Turn manifest jobs into queue records.

    A manifest without jobs gets the default pipeline for its intent. Queue
    ids are fresh; the manifest-local id is kept in ``metadata``.
    """

    owner = brief_id or manifest.source_refs.brief_id or manifest.id or f"manifest-{uuid.uuid4().hex[:12]}"
    specs: List[Dict[str, Any]] = []
    if manifest.jobs:
        total = len(manifest.jobs)
        for index, spec in enumerate(manifest.jobs):
            specs.append(
                {
                    "type": spec.type,
                    "payload": spec.payload.model_dump(mode="json", by_alias=True, exclude={"kind"}),
                    "priority": spec.priority,
                    "max_attempts": spec.max_attempts or max_attempts,
                    "metadata": {
                        "manifest_job_id": spec.id,
                        "depends_on": list(spec.depends_on),
                        "step": index + 1,
                        "total_steps": total,
                    },
                }
            )
    else:
        steps = pipeline_for_intent(manifest.metadata.intent)
        for index, step in enumerate(steps):
            specs.append(
                {
                    "type": step.kind,
                    "payload": {"intent": manifest.metadata.intent},
                    "priority": step.priority,
                    "max_attempts": max_attempts,
                    "metadata": {"step": index + 1, "total_steps": len(steps)},
                }
            )
    jobs = [Job(id=f"job-{uuid.uuid4().hex}", brief_id=owner, **spec) for spec in specs]
    LOG.debug("extracted %d jobs from manifest", len(jobs), extra={"brief_id": owner})
    return jobs


def _cross_reference_issues(raw: Mapping[str, Any]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    assets = raw.get("assets")
    declared = set(assets.keys()) if isinstance(assets, Mapping) else set()

    scenes = raw.get("scenes")
    if isinstance(scenes, list):
        seen_scenes: set[str] = set()
        for s_index, scene in enumerate(scenes):
            if not isinstance(scene, Mapping):
                continue
            scene_id = scene.get("id")
            if isinstance(scene_id, str) and scene_id:
                if scene_id in seen_scenes:
                    issues.append(ValidationIssue(f"scenes.{s_index}.id", f"duplicate scene id {scene_id!r}"))
                seen_scenes.add(scene_id)
            visuals = scene.get("visuals")
            if not isinstance(visuals, list):
                continue
            for v_index, visual in enumerate(visuals):
                if not isinstance(visual, Mapping):
                    continue
                asset_id = visual.get("assetId", visual.get("asset_id"))
                if not isinstance(asset_id, str) or not asset_id:
                    continue
                if normalize_visual_type(visual.get("type")) == "generated":
                    continue
                if asset_id not in declared:
                    issues.append(
                        ValidationIssue(
                            f"scenes.{s_index}.visuals.{v_index}.assetId",
                            f"asset {asset_id!r} is not declared in assets and is not marked generated",
                        )
                    )

    jobs = raw.get("jobs")
    if isinstance(jobs, list):
        job_ids = [job.get("id") for job in jobs if isinstance(job, Mapping)]
        known = {job_id for job_id in job_ids if isinstance(job_id, str)}
        seen_jobs: set[str] = set()
        for j_index, job in enumerate(jobs):
            if not isinstance(job, Mapping):
                continue
            job_id = job.get("id")
            if isinstance(job_id, str) and job_id:
                if job_id in seen_jobs:
                    issues.append(ValidationIssue(f"jobs.{j_index}.id", f"duplicate job id {job_id!r}"))
                seen_jobs.add(job_id)
            depends = job.get("dependsOn", job.get("depends_on"))
            if isinstance(depends, list):
                for dep in depends:
                    if isinstance(dep, str) and dep not in known:
                        issues.append(ValidationIssue(f"jobs.{j_index}.dependsOn", f"unknown job dependency {dep!r}"))
    return issues


def _dedupe(issues: List[ValidationIssue]) -> List[ValidationIssue]:
    seen: set[tuple[str, str]] = set()
    unique: List[ValidationIssue] = []
    for issue in issues:
        key = (issue.field, issue.message)
        if key not in seen:
            seen.add(key)
            unique.append(issue)
    return unique


__all__ = [
    "ManifestMetadata",
    "SourceRefs",
    "CropRect",
    "VisualTransform",
    "ShotDescriptor",
    "SceneVisual",
    "TTSConfig",
    "MusicDescriptor",
    "ManifestAudio",
    "AssetDescriptor",
    "ScenePlan",
    "ManifestJob",
    "ProductionManifest",
    "validate_manifest",
    "timeline_warnings",
    "jobs_from_manifest",
    "normalize_visual_type",
]
