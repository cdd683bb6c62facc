"""Runtime configuration resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from dreamcut.utils.env import env_flag, env_float, env_int

_DEFAULT_FANOUT_CONCURRENCY = 8
_DEFAULT_ANALYZER_TIMEOUT_S = 30.0
_DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class DreamcutConfig:
    """Resolved configuration for the pipeline, queue and workers."""

    db_path: Optional[Path]
    fanout_concurrency: int
    analyzer_timeout_s: float
    max_attempts: int
    backoff_base_s: float
    backoff_max_s: float
    backoff_jitter: float
    poll_interval_s: float
    fixture_analyzers: bool
    analyzer_config_path: Optional[Path] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "DreamcutConfig":
        data = os.environ if env is None else env
        db_hint = (data.get("DREAMCUT_DB_PATH") or "").strip()
        db_path = Path(db_hint).expanduser().resolve() if db_hint else None
        analyzers_hint = (data.get("DREAMCUT_ANALYZER_CONFIG") or "").strip()
        return cls(
            db_path=db_path,
            fanout_concurrency=env_int(data, "DREAMCUT_FANOUT_CONCURRENCY", default=_DEFAULT_FANOUT_CONCURRENCY, minimum=1),
            analyzer_timeout_s=env_float(data, "DREAMCUT_ANALYZER_TIMEOUT_S", default=_DEFAULT_ANALYZER_TIMEOUT_S, minimum=0.1),
            max_attempts=env_int(data, "DREAMCUT_MAX_ATTEMPTS", default=_DEFAULT_MAX_ATTEMPTS, minimum=1),
            backoff_base_s=env_float(data, "DREAMCUT_BACKOFF_BASE_S", default=0.5, minimum=0.0),
            backoff_max_s=env_float(data, "DREAMCUT_BACKOFF_MAX_S", default=30.0, minimum=0.0),
            backoff_jitter=env_float(data, "DREAMCUT_BACKOFF_JITTER", default=0.1, minimum=0.0),
            poll_interval_s=env_float(data, "DREAMCUT_POLL_INTERVAL_S", default=1.0, minimum=0.0),
            fixture_analyzers=env_flag(data.get("DREAMCUT_FIXTURE_ANALYZERS"), default=False),
            analyzer_config_path=Path(analyzers_hint).expanduser() if analyzers_hint else None,
        )


def load_analyzer_config(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Load an analyzer endpoint table from YAML.

    Expected layout::

        vision:
          - name: vision-primary
            url: https://analyzers.internal/vision
          - name: vision-backup
            url: https://backup.internal/vision
            headers: {Authorization: "Bearer ..."}

    Entries are kept in declared order; the first is the primary analyzer.
    """

    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Analyzer config {path} must be a mapping of domain -> analyzer list")
    table: Dict[str, List[Dict[str, Any]]] = {}
    for domain, entries in raw.items():
        if not isinstance(entries, list) or not entries:
            raise ValueError(f"Analyzer config for domain {domain!r} must be a non-empty list")
        chain: List[Dict[str, Any]] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("url"):
                raise ValueError(f"Analyzer {domain}[{index}] must define a url")
            chain.append(dict(entry))
        table[str(domain)] = chain
    return table


__all__ = ["DreamcutConfig", "load_analyzer_config"]
