from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dreamcut import telemetry
from dreamcut.config import DreamcutConfig
from dreamcut.errors import AssemblyError, FanoutCancelled, UnknownBriefError, UnknownJobError, ValidationError
from dreamcut.function_tools.production_planner.models import (
    AnalyzeRequest,
    AnalyzeResponse,
    CancelResponse,
    JobListResponse,
    JobStatsResponse,
    ManifestResponse,
)
from dreamcut.job_queue import JobQueue
from dreamcut.manifest import ProductionManifest, timeline_warnings, validate_manifest
from dreamcut.pipeline import BriefPipeline
from dreamcut.runtime import build_analyzer_registry, build_job_queue

LOG = logging.getLogger("production_planner.entrypoint")
LOG.setLevel(logging.INFO)


def _issues_detail(exc: ValidationError) -> Dict[str, Any]:
    return {"message": "validation failed", "errors": [issue.as_dict() for issue in exc.issues]}


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.errors()})


def create_app(
    config: Optional[DreamcutConfig] = None,
    *,
    queue: Optional[JobQueue] = None,
    pipeline: Optional[BriefPipeline] = None,
) -> FastAPI:
    cfg = config or DreamcutConfig.from_env()
    job_queue = queue if queue is not None else build_job_queue(cfg)
    owns_pipeline = pipeline is None
    brief_pipeline = pipeline if pipeline is not None else BriefPipeline.from_config(cfg, build_analyzer_registry(cfg))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            # a pipeline handed in by the caller is closed by the caller
            if owns_pipeline:
                await brief_pipeline.aclose()
            LOG.info("production_planner shut down")

    app = FastAPI(title="production_planner Entrypoint", lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.state.queue = job_queue
    app.state.pipeline = brief_pipeline

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/ready")
    def ready() -> Dict[str, bool]:
        return {"ready": True}

    @app.post("/analyze")
    async def analyze(req: AnalyzeRequest) -> Dict[str, Any]:
        request_id = uuid.uuid4().hex
        LOG.info("production_planner.analyze", extra={"request_id": request_id, "session_id": req.session_id})
        try:
            package = await brief_pipeline.run(
                req.query,
                req.assets,
                intent=req.intent,
                preferences=req.preferences,
                user_id=req.user_id,
                session_id=req.session_id,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_issues_detail(exc)) from exc
        except FanoutCancelled as exc:
            raise HTTPException(status_code=409, detail=f"analysis cancelled: {exc}") from exc
        except AssemblyError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except Exception as exc:  # pragma: no cover - defensive
            LOG.exception("production_planner.analyze unexpected error", extra={"request_id": request_id})
            raise HTTPException(status_code=500, detail="analysis failed") from exc
        response = AnalyzeResponse(
            request_id=request_id,
            brief=package.wire_dump(),
            degraded_asset_ids=package.degraded_asset_ids(),
        )
        return response.model_dump(by_alias=True)

    @app.post("/sessions/{session_id}/cancel")
    def cancel_session(session_id: str) -> Dict[str, Any]:
        return {"sessionId": session_id, "cancelled": brief_pipeline.cancel(session_id)}

    @app.post("/manifests")
    def submit_manifest(
        manifest: Dict[str, Any] = Body(...),
        brief_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        outcome = validate_manifest(manifest)
        if not isinstance(outcome, ProductionManifest):
            LOG.info("production_planner.manifest rejected", extra={"errors": len(outcome)})
            raise HTTPException(
                status_code=400,
                detail={"message": "manifest rejected", "errors": [issue.as_dict() for issue in outcome]},
            )
        warnings = timeline_warnings(outcome)
        try:
            jobs = job_queue.submit_manifest(outcome, brief_id=brief_id)
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        owner = jobs[0].brief_id if jobs else (brief_id or "")
        telemetry.emit_event("manifest.accepted", {"brief_id": owner, "jobs": len(jobs), "warnings": len(warnings)})
        response = ManifestResponse(
            brief_id=owner,
            job_ids=[job.id for job in jobs],
            warnings=[issue.as_dict() for issue in warnings],
        )
        return response.model_dump(by_alias=True)

    @app.get("/jobs/pending")
    def pending() -> Dict[str, Any]:
        return JobListResponse(jobs=[job.wire_dump() for job in job_queue.list_pending()]).model_dump(by_alias=True)

    @app.get("/jobs/active")
    def active() -> Dict[str, Any]:
        return JobListResponse(jobs=[job.wire_dump() for job in job_queue.list_active()]).model_dump(by_alias=True)

    @app.get("/jobs/stats")
    def stats() -> Dict[str, Any]:
        return JobStatsResponse(stats=[entry.wire_dump() for entry in job_queue.stats()]).model_dump(by_alias=True)

    @app.get("/jobs/{job_id}")
    def job_detail(job_id: str) -> Dict[str, Any]:
        try:
            return job_queue.get(job_id).wire_dump()
        except UnknownJobError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown job_id {job_id}") from exc

    @app.post("/jobs/{job_id}/cancel")
    def cancel_job(job_id: str) -> Dict[str, Any]:
        try:
            cancelled = job_queue.cancel(job_id)
            current = job_queue.get(job_id)
        except UnknownJobError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown job_id {job_id}") from exc
        return CancelResponse(job_id=job_id, cancelled=cancelled, status=current.status).model_dump(by_alias=True)

    @app.get("/briefs/{brief_id}/jobs")
    def brief_jobs(brief_id: str) -> Dict[str, Any]:
        return JobListResponse(jobs=[job.wire_dump() for job in job_queue.jobs_for_brief(brief_id)]).model_dump(by_alias=True)

    @app.get("/briefs/{brief_id}/progress")
    def brief_progress(brief_id: str) -> Dict[str, Any]:
        try:
            return job_queue.brief_progress(brief_id).wire_dump()
        except UnknownBriefError as exc:
            raise HTTPException(status_code=404, detail=f"No jobs for brief_id {brief_id}") from exc

    return app


app = create_app()
