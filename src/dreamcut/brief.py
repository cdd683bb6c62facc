"""Brief assembly and migration of the legacy nested brief shape."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from . import telemetry
from .errors import AssemblyError, ValidationError, issues_from_pydantic
from .schemas import AnalysisMap, BriefPackage, BriefPlan, BriefRequest

LOG = logging.getLogger(__name__)

BRIEF_SHAPE = "brief.v2"


def new_brief_id() -> str:
    return f"brief-{uuid.uuid4().hex}"


def assemble_brief(
    request: Optional[BriefRequest],
    analysis: Optional[AnalysisMap],
    plan: Optional[BriefPlan],
    *,
    brief_id: Optional[str] = None,
) -> BriefPackage:
    """Package request, analysis and plan into a fresh immutable BriefPackage.

    Inputs are deep-copied so later mutation of the caller's objects can never
    leak into an issued package. A missing request or analysis is fatal; a
    missing plan yields an empty one.
    """

    if request is None:
        raise AssemblyError("cannot assemble a brief without a request")
    if analysis is None:
        raise AssemblyError("cannot assemble a brief without attempted analysis")
    package = BriefPackage(
        brief_id=brief_id or new_brief_id(),
        request=request.model_copy(deep=True),
        analysis=analysis.model_copy(deep=True),
        plan=(plan or BriefPlan()).model_copy(deep=True),
    )
    degraded = package.degraded_asset_ids()
    LOG.info(
        "brief assembled",
        extra={"brief_id": package.brief_id, "options": len(package.plan.creative_options), "degraded": len(degraded)},
    )
    telemetry.emit_event(
        "brief.assembled",
        {
            "brief_id": package.brief_id,
            "assets": len(package.request.assets),
            "options": len(package.plan.creative_options),
            "degraded_assets": degraded,
            "cost_estimate": package.plan.cost_estimate,
        },
    )
    return package


def coerce_brief_payload(payload: Mapping[str, Any]) -> BriefPackage:
    """Load a stored brief, migrating the legacy nested shape on read.

    The flat ``{briefId, request, analysis, plan}`` layout is authoritative.
    Payloads that carry the legacy ``brief.assets`` / ``brief.creativeOptions``
    block are rewritten into the flat layout; when both layouts are present
    the flat one wins and the nested block is ignored.
    """

    data = dict(payload)
    nested = data.pop("brief", None)
    if isinstance(nested, Mapping) and not _has_flat_shape(data):
        data = _migrate_nested(data, nested)
    data["shape"] = BRIEF_SHAPE
    try:
        return BriefPackage.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(issues_from_pydantic(exc)) from exc


def _has_flat_shape(data: Mapping[str, Any]) -> bool:
    return "request" in data and "plan" in data


def _migrate_nested(data: Dict[str, Any], nested: Mapping[str, Any]) -> Dict[str, Any]:
    request = dict(data.get("request") or {})
    request.setdefault("query", nested.get("query") or data.get("query") or "")
    request.setdefault("assets", list(nested.get("assets") or []))
    if nested.get("intent") or data.get("intent"):
        request.setdefault("intent", nested.get("intent") or data.get("intent"))
    if nested.get("preferences"):
        request.setdefault("preferences", dict(nested["preferences"]))

    plan = dict(data.get("plan") or {})
    plan.setdefault("creativeOptions", list(nested.get("creativeOptions") or nested.get("creative_options") or []))
    processing = nested.get("assetProcessing") or nested.get("asset_processing")
    if processing:
        plan.setdefault("assetProcessing", dict(processing))
    cost = nested.get("costEstimate", nested.get("cost_estimate"))
    if cost is not None:
        plan.setdefault("costEstimate", cost)

    migrated: Dict[str, Any] = {
        "briefId": data.get("briefId") or data.get("brief_id") or nested.get("briefId") or new_brief_id(),
        "request": request,
        "analysis": data.get("analysis") or nested.get("analysis") or {},
        "plan": plan,
    }
    created = data.get("createdAt") or data.get("created_at") or nested.get("createdAt")
    if created:
        migrated["createdAt"] = created
    LOG.debug("migrated legacy nested brief", extra={"brief_id": migrated["briefId"]})
    return migrated


__all__ = ["BRIEF_SHAPE", "assemble_brief", "coerce_brief_payload", "new_brief_id"]
