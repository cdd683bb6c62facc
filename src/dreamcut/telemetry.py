from __future__ import annotations

import json
import logging
import os
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional


# oldest events are dropped once the buffer is full
MAX_EVENTS = 1000

_EVENTS: Deque[Dict[str, Any]] = deque(maxlen=MAX_EVENTS)
_LOCK = threading.Lock()
LOG = logging.getLogger(__name__)


def emit_event(name: str, payload: Optional[Dict[str, Any]] = None) -> None:
    """Record a telemetry event in-process and optionally persist to a log file.

    Tests can inspect `get_events()` to verify expected emissions. When
    `DREAMCUT_TELEMETRY_LOG` names a file, each event is appended as a JSON
    line.
    """
    ev: Dict[str, Any] = {"name": name, "payload": payload or {}}
    with _LOCK:
        _EVENTS.append(ev)
    log_path = os.environ.get("DREAMCUT_TELEMETRY_LOG")
    if log_path:
        try:
            with open(log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(ev, default=str) + "\n")
        except OSError as exc:
            # best-effort; a broken log file must not fail the caller
            LOG.debug("telemetry log write to %s failed: %s", log_path, exc)


def get_events(name: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return a copy of recorded events, optionally only those called `name`."""
    with _LOCK:
        if name is None:
            return list(_EVENTS)
        return [ev for ev in _EVENTS if ev["name"] == name]


def clear_events() -> None:
    """Clear the in-memory event buffer."""
    with _LOCK:
        _EVENTS.clear()
