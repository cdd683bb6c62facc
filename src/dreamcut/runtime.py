"""Builders that turn a `DreamcutConfig` into live queue and analyzer objects."""

from __future__ import annotations

import logging
from typing import Optional

from .analyzers import AnalyzerRegistry
from .config import DreamcutConfig, load_analyzer_config
from .db.job_store import SqliteJobStore
from .job_queue import InMemoryJobStore, JobQueue, JobStore
from .retry import BackoffPolicy

LOG = logging.getLogger(__name__)


def build_job_store(config: DreamcutConfig) -> JobStore:
    if config.db_path is None:
        LOG.info("DREAMCUT_DB_PATH unset; using a process-local job store")
        return InMemoryJobStore()
    return SqliteJobStore(config.db_path)


def build_job_queue(config: DreamcutConfig, store: Optional[JobStore] = None) -> JobQueue:
    backoff = BackoffPolicy(
        base_s=config.backoff_base_s,
        jitter=config.backoff_jitter,
        max_s=config.backoff_max_s,
    )
    return JobQueue(
        store if store is not None else build_job_store(config),
        backoff=backoff,
        default_max_attempts=config.max_attempts,
    )


def build_analyzer_registry(config: DreamcutConfig) -> AnalyzerRegistry:
    if config.fixture_analyzers:
        return AnalyzerRegistry.fixtures()
    if config.analyzer_config_path is not None:
        table = load_analyzer_config(config.analyzer_config_path)
        return AnalyzerRegistry.from_config(table, timeout=config.analyzer_timeout_s)
    LOG.warning("no analyzer config (DREAMCUT_ANALYZER_CONFIG); falling back to local fixture analyzers")
    return AnalyzerRegistry.fixtures()


__all__ = ["build_job_store", "build_job_queue", "build_analyzer_registry"]
