from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import uvicorn
import yaml

from .config import DreamcutConfig
from .errors import ValidationError
from .job_queue import claim_order
from .jobs import Job
from .manifest import ProductionManifest, timeline_warnings, validate_manifest
from .pipeline import BriefPipeline
from .runtime import build_analyzer_registry, build_job_queue
from .schemas import BriefPackage
from .worker import Handler, JobWorker


def load_document(path: Path) -> Any:
    """Load a JSON or YAML document; YAML is a superset so both parse."""
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix.lower() == ".json":
            return json.load(fh)
        return yaml.safe_load(fh)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def cmd_validate_manifest(path: Path) -> int:
    outcome = validate_manifest(load_document(path))
    if not isinstance(outcome, ProductionManifest):
        for issue in outcome:
            print(f"ERROR {issue}")
        return 1
    for warning in timeline_warnings(outcome):
        print(f"WARNING {warning}")
    print(f"Manifest OK: {len(outcome.scenes)} scenes, {len(outcome.jobs)} jobs")
    return 0


def cmd_submit_manifest(path: Path, config: DreamcutConfig, brief_id: Optional[str]) -> int:
    outcome = validate_manifest(load_document(path))
    if not isinstance(outcome, ProductionManifest):
        for issue in outcome:
            print(f"ERROR {issue}")
        return 1
    jobs = build_job_queue(config).submit_manifest(outcome, brief_id=brief_id)
    ranked = sorted(enumerate(jobs), key=lambda pair: claim_order(pair[1], pair[0]))
    for _, job in ranked:
        print(f"{job.id}\t{job.type}\tpriority={job.priority}")
    return 0


def cmd_brief(path: Path, config: DreamcutConfig) -> int:
    request = load_document(path) or {}
    if not isinstance(request, Mapping):
        print("ERROR request file must contain an object")
        return 1
    pipeline = BriefPipeline.from_config(config, build_analyzer_registry(config))

    async def run() -> BriefPackage:
        try:
            return await pipeline.run(
                request.get("query", ""),
                request.get("assets") or [],
                intent=request.get("intent", "mix"),
                preferences=request.get("preferences"),
                user_id=request.get("userId"),
                session_id=request.get("sessionId"),
            )
        finally:
            await pipeline.aclose()

    try:
        package = asyncio.run(run())
    except ValidationError as exc:
        for issue in exc.issues:
            print(f"ERROR {issue}")
        return 1
    _print_json(package.wire_dump())
    return 0


def cmd_stats(config: DreamcutConfig) -> int:
    queue = build_job_queue(config)
    _print_json(
        {
            "pending": len(queue.list_pending()),
            "active": len(queue.list_active()),
            "stats": [entry.wire_dump() for entry in queue.stats()],
        }
    )
    return 0


def _simulated_handler(job: Job) -> Dict[str, Any]:
    return {"simulated": True, "type": job.type}


def load_handlers(spec: str) -> Dict[str, Handler]:
    """Resolve ``package.module:attribute`` to a mapping of job type -> handler."""
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"handler spec must look like 'module:attribute', got {spec!r}")
    target = getattr(importlib.import_module(module_name), attr)
    if not isinstance(target, Mapping):
        raise ValueError(f"{spec} must be a mapping of job type to handler")
    return dict(target)


def cmd_worker(
    config: DreamcutConfig,
    *,
    handlers_spec: Optional[str],
    simulate: bool,
    worker_id: Optional[str],
    max_jobs: Optional[int],
) -> int:
    handlers = load_handlers(handlers_spec) if handlers_spec else {}
    worker = JobWorker(
        build_job_queue(config),
        worker_id=worker_id,
        handlers=handlers,
        default_handler=_simulated_handler if simulate else None,
        poll_interval_s=config.poll_interval_s,
    )
    if max_jobs is not None:
        processed = asyncio.run(worker.drain(max_jobs=max_jobs))
        for job in processed:
            print(f"{job.id}\t{job.status}\tattempts={job.attempts}")
        return 0
    try:
        count = asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        return 130
    print(f"worker {worker.worker_id} processed {count} jobs")
    return 0


def cmd_serve(config: DreamcutConfig, *, host: str, port: int, log_level: str) -> int:
    from .function_tools.production_planner.entrypoint import create_app

    uvicorn.run(create_app(config), host=host, port=port, log_level=log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dreamcut")
    sub = p.add_subparsers(dest="command", required=True)

    v = sub.add_parser("validate-manifest", help="Validate a production manifest (JSON or YAML)")
    v.add_argument("file")

    s = sub.add_parser("submit-manifest", help="Validate a manifest and enqueue its jobs")
    s.add_argument("file")
    s.add_argument("--brief-id", default=None)

    b = sub.add_parser("brief", help="Run the analysis pipeline for a request file")
    b.add_argument("file")

    sub.add_parser("stats", help="Print queue statistics")

    w = sub.add_parser("worker", help="Run a job worker against the configured queue")
    w.add_argument("--handlers", default=None, help="module:attribute naming a job type -> handler mapping")
    w.add_argument("--simulate", action="store_true", help="Complete jobs without a handler as simulated")
    w.add_argument("--worker-id", default=None)
    w.add_argument("--max-jobs", type=int, default=None, help="Process at most N ready jobs, then exit")

    srv = sub.add_parser("serve", help="Launch the production planner HTTP service via uvicorn")
    srv.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    srv.add_argument("--port", type=int, default=7080, help="Port to bind (default: 7080)")
    srv.add_argument("--log-level", default="info", help="uvicorn log level (default: info)")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = DreamcutConfig.from_env()
    if args.command == "validate-manifest":
        return cmd_validate_manifest(Path(args.file))
    if args.command == "submit-manifest":
        return cmd_submit_manifest(Path(args.file), config, args.brief_id)
    if args.command == "brief":
        return cmd_brief(Path(args.file), config)
    if args.command == "stats":
        return cmd_stats(config)
    if args.command == "serve":
        return cmd_serve(config, host=args.host, port=args.port, log_level=args.log_level)
    return cmd_worker(
        config,
        handlers_spec=args.handlers,
        simulate=args.simulate,
        worker_id=args.worker_id,
        max_jobs=args.max_jobs,
    )


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
