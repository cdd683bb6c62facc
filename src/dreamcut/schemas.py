from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

MediaKind = Literal["image", "video", "audio", "document"]
AnalysisDomain = Literal["vision", "video", "audio", "text"]
Intent = Literal["image", "video", "audio", "mix"]
Engagement = Literal["low", "medium", "high"]

MEDIA_KINDS: tuple[str, ...] = ("image", "video", "audio", "document")
ANALYSIS_DOMAINS: tuple[str, ...] = ("vision", "video", "audio", "text")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class _WireModel(BaseModel):
    """Base model accepting both snake_case and the camelCase wire format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire_dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class _FrozenWireModel(_WireModel):
    """Wire model that rejects attribute assignment once built."""

    model_config = ConfigDict(frozen=True)


class AssetMetadata(_FrozenWireModel):
    """Metadata bag attached to a media asset."""

    model_config = ConfigDict(extra="allow")

    filename: Optional[str] = None
    size_bytes: Optional[int] = Field(default=None, ge=0)
    duration_s: Optional[float] = Field(default=None, ge=0)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    mime_type: Optional[str] = None
    source: Optional[str] = None
    description: Optional[str] = None


class MediaReference(_WireModel):
    """Caller-supplied media reference prior to normalization."""

    id: Optional[str] = None
    url: Optional[str] = None
    media_type: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _lift_description(cls, data: Any) -> Any:
        """Accept a description given next to the url instead of inside metadata."""
        if not isinstance(data, dict):
            return data
        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            return data
        current = (metadata or {}).get("description")
        if isinstance(current, str) and current.strip():
            return data
        for key in ("userDescription", "user_description", "description"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return {**data, "metadata": {**(metadata or {}), "description": value}}
        return data


class MediaAsset(_FrozenWireModel):
    """Canonical media asset record."""

    id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    media_type: MediaKind
    metadata: AssetMetadata = Field(default_factory=AssetMetadata)

    @property
    def description(self) -> Optional[str]:
        """User-supplied description, or None when absent or blank."""
        value = self.metadata.description
        if value is None or not value.strip():
            return None
        return value


class AnalysisOutcome(_FrozenWireModel):
    """Result of a single analyzer invocation."""

    analyzer: str
    success: bool
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    processing_time_s: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _check_shape(self) -> "AnalysisOutcome":
        if self.success and self.value is None:
            raise ValueError("successful outcome must carry a value")
        if not self.success and not self.error:
            raise ValueError("failed outcome must carry an error message")
        return self


class AnalysisResult(_FrozenWireModel):
    """Outcome of analyzing one asset in one domain.

    `primary` is the first analyzer's outcome. `fallback` is the outcome that
    ended the fallback chain (the first fallback success, or the last
    fallback failure) and is only present when the primary failed.
    `attempts` keeps every outcome in invocation order.
    """

    domain: AnalysisDomain
    asset_id: str
    asset_url: str
    primary: AnalysisOutcome
    fallback: Optional[AnalysisOutcome] = None
    attempts: List[AnalysisOutcome] = Field(default_factory=list)

    @model_validator(mode="after")
    def _never_replace_success(self) -> "AnalysisResult":
        if self.primary.success and self.fallback is not None:
            raise ValueError("fallback outcome recorded after a successful primary")
        return self

    @property
    def success(self) -> bool:
        return self.primary.success or bool(self.fallback and self.fallback.success)

    @property
    def fallback_used(self) -> bool:
        return bool(self.fallback and self.fallback.success)

    @property
    def value(self) -> Optional[Dict[str, Any]]:
        if self.primary.success:
            return self.primary.value
        if self.fallback and self.fallback.success:
            return self.fallback.value
        return None

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None
        last = self.fallback or self.primary
        return last.error

    @property
    def analyzer(self) -> Optional[str]:
        if self.primary.success:
            return self.primary.analyzer
        if self.fallback and self.fallback.success:
            return self.fallback.analyzer
        return None


class AnalysisMap(_FrozenWireModel):
    """Analysis results keyed by domain, then by asset url."""

    results: Dict[AnalysisDomain, Dict[str, AnalysisResult]] = Field(default_factory=dict)

    def get(self, domain: str, asset_url: str) -> Optional[AnalysisResult]:
        return self.results.get(domain, {}).get(asset_url)  # type: ignore[call-overload]

    def iter_results(self) -> Iterator[AnalysisResult]:
        for per_asset in self.results.values():
            yield from per_asset.values()

    def for_asset(self, asset_id: str) -> List[AnalysisResult]:
        return [result for result in self.iter_results() if result.asset_id == asset_id]

    def failed(self) -> List[AnalysisResult]:
        return [result for result in self.iter_results() if not result.success]

    def summary(self) -> Dict[str, int]:
        total = succeeded = fallback = 0
        for result in self.iter_results():
            total += 1
            if result.success:
                succeeded += 1
            if result.fallback_used:
                fallback += 1
        return {"total": total, "succeeded": succeeded, "failed": total - succeeded, "fallback_used": fallback}


class BriefPreferences(_FrozenWireModel):
    """Caller output preferences."""

    model_config = ConfigDict(extra="allow")

    aspect_ratio: Optional[str] = None
    platform: Optional[str] = None
    output_count: Optional[int] = Field(default=None, ge=1)
    duration_s: Optional[float] = Field(default=None, gt=0)
    language: Optional[str] = None


class BriefRequest(_FrozenWireModel):
    """Normalized creative request."""

    query: str
    assets: List[MediaAsset] = Field(default_factory=list)
    intent: Intent = "mix"
    preferences: BriefPreferences = Field(default_factory=BriefPreferences)
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class CreativeDirection(_FrozenWireModel):
    opening_strategy: str
    visual_treatment: str
    pacing: str
    transition_style: str


class AssetUsage(_FrozenWireModel):
    """How an option uses the request's assets.

    `asset_descriptions` maps asset id to the user's description verbatim.
    """

    primary_asset_ref: Optional[str] = None
    supporting_asset_refs: List[str] = Field(default_factory=list)
    enhancement_needs: List[str] = Field(default_factory=list)
    asset_descriptions: Dict[str, str] = Field(default_factory=dict)


class CreativeOption(_FrozenWireModel):
    id: str
    rank: int = Field(..., ge=1)
    title: str
    description: str
    profile_id: Optional[str] = None
    creative_direction: CreativeDirection
    asset_usage: AssetUsage
    target_engagement: Engagement
    complexity: int = Field(default=1, ge=0)


class ProcessingAction(_FrozenWireModel):
    """One preparation step for an asset before production."""

    action: str
    reason: str
    params: Dict[str, Any] = Field(default_factory=dict)
    user_description: Optional[str] = None


class BriefPlan(_FrozenWireModel):
    creative_options: List[CreativeOption] = Field(default_factory=list)
    asset_processing: Dict[str, List[ProcessingAction]] = Field(default_factory=dict)
    cost_estimate: float = Field(default=0.0, ge=0)

    def top_options(self, count: int = 3) -> List[CreativeOption]:
        return sorted(self.creative_options, key=lambda option: option.rank)[: max(count, 0)]


class BriefPackage(_FrozenWireModel):
    """Immutable result of analyzing one creative request."""

    shape: Literal["brief.v2"] = "brief.v2"
    brief_id: str
    created_at: str = Field(default_factory=_now_iso)
    request: BriefRequest
    analysis: AnalysisMap
    plan: BriefPlan

    def degraded_asset_ids(self) -> List[str]:
        """Asset ids with at least one failed analysis domain."""
        seen: List[str] = []
        for result in self.analysis.failed():
            if result.asset_id not in seen:
                seen.append(result.asset_id)
        return seen


__all__ = [
    "MediaKind",
    "AnalysisDomain",
    "Intent",
    "Engagement",
    "MEDIA_KINDS",
    "ANALYSIS_DOMAINS",
    "AssetMetadata",
    "MediaReference",
    "MediaAsset",
    "AnalysisOutcome",
    "AnalysisResult",
    "AnalysisMap",
    "BriefPreferences",
    "BriefRequest",
    "CreativeDirection",
    "AssetUsage",
    "CreativeOption",
    "ProcessingAction",
    "BriefPlan",
    "BriefPackage",
]
