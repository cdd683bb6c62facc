from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from .profiles import CreativeProfile, detect_profiles
from .schemas import (
    AnalysisMap,
    AssetUsage,
    BriefPlan,
    BriefRequest,
    CreativeDirection,
    CreativeOption,
    MediaAsset,
    ProcessingAction,
)

BASE_REQUEST_COST = 1.0
MEDIA_COSTS: Dict[str, float] = {"image": 1.0, "video": 4.0, "audio": 1.5, "document": 0.5}
ACTION_COSTS: Dict[str, float] = {
    "use-as-is": 0.0,
    "reanalyze": 0.25,
    "extract-text": 0.25,
    "loudness-normalize": 0.25,
    "crop-to-aspect": 0.25,
    "reframe": 1.0,
    "trim": 0.5,
    "upscale": 1.0,
}
_DEFAULT_ACTION_COST = 0.5
_COMPLEXITY_FACTOR = 0.15
_MIN_LONG_EDGE_PX = 1024
_ASPECT_TOLERANCE = 0.02

_PREFERRED_PRIMARY = {
    "video": ("video", "image", "audio", "document"),
    "image": ("image", "video", "document", "audio"),
    "audio": ("audio", "video", "image", "document"),
    "mix": ("video", "image", "audio", "document"),
}


def synthesize(request: BriefRequest, analysis: AnalysisMap, *, option_limit: int = 3) -> BriefPlan:
    """Derive ranked creative options, per-asset actions and a cost estimate.

    Pure function over already gathered analysis. Every user description is
    copied verbatim into the processing actions and option asset usage keyed
    by the same asset id.
    """

    asset_processing = {asset.id: plan_asset_actions(asset, request, analysis) for asset in request.assets}
    profiles = detect_profiles(
        query=request.query,
        intent=request.intent,
        platform=request.preferences.platform,
        limit=max(option_limit, 1),
    )
    options = [
        _build_option(rank, profile, request, analysis, asset_processing)
        for rank, profile in enumerate(profiles, start=1)
    ]
    selected = options[0] if options else None
    cost = estimate_cost(request.assets, asset_processing, complexity=selected.complexity if selected else 0)
    return BriefPlan(creative_options=options, asset_processing=asset_processing, cost_estimate=cost)


def plan_asset_actions(asset: MediaAsset, request: BriefRequest, analysis: AnalysisMap) -> List[ProcessingAction]:
    meta = asset.metadata
    prefs = request.preferences
    description = asset.description
    actions: List[ProcessingAction] = []

    failed = [result.domain for result in analysis.for_asset(asset.id) if not result.success]
    if failed:
        actions.append(
            ProcessingAction(
                action="reanalyze",
                reason=f"analysis unavailable for {', '.join(sorted(failed))}",
                params={"domains": sorted(failed)},
            )
        )

    target_ratio = parse_aspect_ratio(prefs.aspect_ratio)
    if asset.media_type in ("image", "video") and meta.width and meta.height:
        if asset.media_type == "image" and max(meta.width, meta.height) < _MIN_LONG_EDGE_PX:
            actions.append(
                ProcessingAction(
                    action="upscale",
                    reason=f"long edge {max(meta.width, meta.height)}px below {_MIN_LONG_EDGE_PX}px",
                    params={"min_long_edge_px": _MIN_LONG_EDGE_PX},
                )
            )
        if target_ratio is not None:
            current = meta.width / meta.height
            if abs(current - target_ratio) / target_ratio > _ASPECT_TOLERANCE:
                actions.append(
                    ProcessingAction(
                        action="crop-to-aspect" if asset.media_type == "image" else "reframe",
                        reason=f"source aspect {current:.2f} differs from requested {prefs.aspect_ratio}",
                        params={"aspect_ratio": prefs.aspect_ratio},
                    )
                )

    if asset.media_type in ("video", "audio") and meta.duration_s and prefs.duration_s:
        if meta.duration_s > prefs.duration_s:
            actions.append(
                ProcessingAction(
                    action="trim",
                    reason=f"source runs {meta.duration_s:g}s, target is {prefs.duration_s:g}s",
                    params={"max_duration_s": prefs.duration_s},
                )
            )
    if asset.media_type == "audio":
        actions.append(ProcessingAction(action="loudness-normalize", reason="match narration and music levels"))
    if asset.media_type == "document":
        actions.append(ProcessingAction(action="extract-text", reason="documents feed narration and captions"))

    if not actions:
        actions.append(ProcessingAction(action="use-as-is", reason="asset meets the requested output"))
    if description is not None:
        actions = [action.model_copy(update={"user_description": description}) for action in actions]
    return actions


def estimate_cost(
    assets: Sequence[MediaAsset],
    asset_processing: Mapping[str, Sequence[ProcessingAction]],
    *,
    complexity: int = 0,
) -> float:
    """Cost in abstract credits; never decreases as assets or complexity grow."""

    subtotal = BASE_REQUEST_COST
    for asset in assets:
        subtotal += MEDIA_COSTS.get(asset.media_type, _DEFAULT_ACTION_COST)
        for action in asset_processing.get(asset.id, ()):
            subtotal += ACTION_COSTS.get(action.action, _DEFAULT_ACTION_COST)
    multiplier = 1.0 + _COMPLEXITY_FACTOR * max(complexity, 0)
    return round(subtotal * multiplier, 2)


def parse_aspect_ratio(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    token = value.strip().replace("/", ":").replace("x", ":")
    parts = token.split(":")
    try:
        if len(parts) == 2:
            width, height = float(parts[0]), float(parts[1])
        elif len(parts) == 1:
            return float(parts[0]) or None
        else:
            return None
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return width / height


def _build_option(
    rank: int,
    profile: CreativeProfile,
    request: BriefRequest,
    analysis: AnalysisMap,
    asset_processing: Mapping[str, Sequence[ProcessingAction]],
) -> CreativeOption:
    primary = _choose_primary(request, analysis)
    supporting = [asset.id for asset in request.assets if primary is None or asset.id != primary.id]
    needs: List[str] = list(profile.enhancement_needs)
    if primary is not None:
        for action in asset_processing.get(primary.id, ()):
            if action.action not in ("use-as-is", "reanalyze") and action.action not in needs:
                needs.append(action.action)
    descriptions = {asset.id: asset.description for asset in request.assets if asset.description is not None}
    complexity = len(needs) + (1 if profile.engagement == "high" else 0)
    asset_count = len(request.assets)
    description = f"{profile.goal}."
    if asset_count:
        description += f" Built from {asset_count} supplied asset{'s' if asset_count != 1 else ''}"
        description += f", led by {primary.id}." if primary is not None else "."
    return CreativeOption(
        id=f"option-{rank}-{profile.id}",
        rank=rank,
        title=profile.name,
        description=description,
        profile_id=profile.id,
        creative_direction=CreativeDirection(
            opening_strategy=profile.opening_strategy,
            visual_treatment=profile.visual_treatment,
            pacing=profile.pacing,
            transition_style=profile.transition_style,
        ),
        asset_usage=AssetUsage(
            primary_asset_ref=primary.id if primary is not None else None,
            supporting_asset_refs=supporting,
            enhancement_needs=needs,
            asset_descriptions=descriptions,
        ),
        target_engagement=profile.engagement,  # type: ignore[arg-type]
        complexity=complexity,
    )


def _choose_primary(request: BriefRequest, analysis: AnalysisMap) -> Optional[MediaAsset]:
    if not request.assets:
        return None
    order = _PREFERRED_PRIMARY.get(request.intent, _PREFERRED_PRIMARY["mix"])

    def _key(indexed: tuple[int, MediaAsset]) -> tuple[int, int, int, int]:
        index, asset = indexed
        results = analysis.for_asset(asset.id)
        analyzed_ok = 0 if results and all(result.success for result in results) else 1
        described = 0 if asset.description is not None else 1
        kind_rank = order.index(asset.media_type) if asset.media_type in order else len(order)
        return (kind_rank, analyzed_ok, described, index)

    return min(enumerate(request.assets), key=_key)[1]


__all__ = [
    "synthesize",
    "plan_asset_actions",
    "estimate_cost",
    "parse_aspect_ratio",
    "MEDIA_COSTS",
    "ACTION_COSTS",
]
