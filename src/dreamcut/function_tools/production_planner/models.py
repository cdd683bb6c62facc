"""Typed request/response envelopes for the production_planner service."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "AnalyzeRequest",
    "AnalyzeResponse",
    "ManifestResponse",
    "JobListResponse",
    "JobStatsResponse",
    "CancelResponse",
]


class _Envelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(_Envelope):
    """Inbound creative request; assets are normalized by the pipeline."""

    query: str
    assets: List[Dict[str, Any]] = Field(default_factory=list)
    intent: str = "mix"
    preferences: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class AnalyzeResponse(_Envelope):
    status: Literal["success"] = "success"
    request_id: str
    brief: Dict[str, Any]
    degraded_asset_ids: List[str] = Field(default_factory=list)


class ManifestResponse(_Envelope):
    status: Literal["accepted"] = "accepted"
    brief_id: str
    job_ids: List[str]
    warnings: List[Dict[str, Any]] = Field(default_factory=list)


class JobListResponse(_Envelope):
    jobs: List[Dict[str, Any]]


class JobStatsResponse(_Envelope):
    stats: List[Dict[str, Any]]


class CancelResponse(_Envelope):
    job_id: str
    cancelled: bool
    status: str
