from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from . import telemetry
from .analyzers import AnalyzerRegistry
from .assets import MediaInput, normalize_assets
from .brief import assemble_brief
from .cancellation import CancellationToken, SessionRegistry
from .config import DreamcutConfig
from .errors import ValidationError, ValidationIssue, issues_from_pydantic
from .fanout import AnalysisFanout
from .schemas import BriefPackage, BriefPreferences, BriefRequest, MediaAsset
from .synthesis import synthesize

LOG = logging.getLogger(__name__)

_INTENTS = ("image", "video", "audio", "mix")


class BriefPipeline:
    """Request to BriefPackage: normalize, fan out analysis, synthesize, assemble.

    At most one analysis runs per session id; starting a new one cancels the
    previous one, whose caller then receives `FanoutCancelled`.
    """

    def __init__(
        self,
        fanout: AnalysisFanout,
        *,
        sessions: Optional[SessionRegistry] = None,
        option_limit: int = 3,
    ) -> None:
        self.fanout = fanout
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.option_limit = option_limit

    @classmethod
    def from_config(cls, config: DreamcutConfig, registry: AnalyzerRegistry) -> "BriefPipeline":
        fanout = AnalysisFanout(
            registry,
            concurrency=config.fanout_concurrency,
            call_timeout_s=config.analyzer_timeout_s,
        )
        return cls(fanout)

    async def run(
        self,
        query: str,
        references: Iterable[MediaInput],
        *,
        intent: str = "mix",
        preferences: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> BriefPackage:
        request = build_request(
            query,
            references,
            intent=intent,
            preferences=preferences,
            user_id=user_id,
            session_id=session_id,
        )
        return await self.run_request(request)

    async def run_request(self, request: BriefRequest) -> BriefPackage:
        session_id = request.session_id
        token = self.sessions.begin(session_id) if session_id else CancellationToken()
        LOG.info(
            "brief pipeline start",
            extra={"session_id": request.session_id, "token_id": token.token_id, "assets": len(request.assets)},
        )
        try:
            analysis = await self.fanout.analyze(
                request.assets,
                query=request.query,
                intent=request.intent,
                token=token,
            )
            # superseded after the fanout joined but before we act on it
            token.raise_if_cancelled()
            plan = synthesize(request, analysis, option_limit=self.option_limit)
            package = assemble_brief(request, analysis, plan)
        finally:
            if session_id:
                self.sessions.finish(session_id, token)
        telemetry.emit_event(
            "brief.pipeline.complete",
            {"session_id": request.session_id, "brief_id": package.brief_id},
        )
        return package

    def cancel(self, session_id: str) -> bool:
        return self.sessions.cancel(session_id)

    async def aclose(self) -> None:
        await self.fanout.registry.aclose()


def build_request(
    query: str,
    references: Iterable[MediaInput],
    *,
    intent: str = "mix",
    preferences: Optional[Mapping[str, Any]] = None,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> BriefRequest:
    """Validate the inbound request, reporting every problem at once."""

    issues: List[ValidationIssue] = []
    if not isinstance(query, str) or not query.strip():
        issues.append(ValidationIssue("query", "query must be a non-empty string"))
    if intent not in _INTENTS:
        issues.append(ValidationIssue("intent", f"intent must be one of {', '.join(_INTENTS)}, got {intent!r}"))
    prefs = BriefPreferences()
    try:
        prefs = BriefPreferences.model_validate(dict(preferences or {}))
    except PydanticValidationError as exc:
        issues.extend(issues_from_pydantic(exc, "preferences"))
    assets: List[MediaAsset] = []
    try:
        assets = normalize_assets(references)
    except ValidationError as exc:
        issues.extend(exc.issues)
    if issues:
        raise ValidationError(issues)
    return BriefRequest(
        query=query,
        assets=assets,
        intent=intent,  # type: ignore[arg-type]
        preferences=prefs,
        user_id=user_id,
        session_id=session_id,
    )


__all__ = ["BriefPipeline", "build_request"]
