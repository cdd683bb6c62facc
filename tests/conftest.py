"""Test configuration helpers."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest


def _ensure_src_on_path() -> None:
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    for entry in (src, root):
        entry_str = str(entry)
        if entry_str not in sys.path:
            sys.path.insert(0, entry_str)


def _ensure_pythonpath_env() -> None:
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    entries = [str(src), str(root)]
    existing = os.environ.get("PYTHONPATH")
    if existing:
        entries.append(existing)
    seen: set[str] = set()
    ordered: list[str] = []
    for entry in entries:
        if entry and entry not in seen:
            ordered.append(entry)
            seen.add(entry)
    os.environ["PYTHONPATH"] = os.pathsep.join(ordered)


_ensure_src_on_path()
_ensure_pythonpath_env()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of test runs."""
    for name in list(os.environ):
        if name.startswith("DREAMCUT_"):
            monkeypatch.delenv(name, raising=False)
    from dreamcut import telemetry

    telemetry.clear_events()


@pytest.fixture
def manifest_factory() -> Callable[..., Dict[str, Any]]:
    """Build a structurally valid manifest dict; keyword overrides replace top-level keys."""

    def _build(**overrides: Any) -> Dict[str, Any]:
        manifest: Dict[str, Any] = {
            "userId": None,
            "sourceRefs": {"briefId": "brief-test"},
            "metadata": {
                "intent": "video",
                "durationSeconds": 10,
                "aspectRatio": "16:9",
                "platform": "youtube",
                "language": "en",
            },
            "scenes": [
                {
                    "id": "s1",
                    "startAtSec": 0,
                    "durationSeconds": 4,
                    "purpose": "hook",
                    "narration": "Meet the new logo.",
                    "visuals": [{"type": "user-supplied", "assetId": "a1"}],
                },
                {
                    "id": "s2",
                    "startAtSec": 4,
                    "durationSeconds": 6,
                    "purpose": "reveal",
                    "visuals": [{"type": "generated", "assetId": "gen_s2_visual"}],
                },
            ],
            "assets": {"a1": {"id": "a1", "source": "user", "status": "ready"}},
            "audio": {"ttsDefaults": {"provider": "elevenlabs", "voiceId": "eva"}},
            "jobs": [
                {"id": "job_tts_s1", "type": "tts", "payload": {"text": "Meet the new logo.", "sceneId": "s1"}, "priority": 10},
                {
                    "id": "job_gen_s2",
                    "type": "generate_image",
                    "payload": {"prompt": "clean studio background", "resultAssetId": "gen_s2_visual"},
                    "priority": 10,
                },
                {
                    "id": "job_render",
                    "type": "final-assembly",
                    "payload": {},
                    "priority": 12,
                    "dependsOn": ["job_tts_s1", "job_gen_s2"],
                },
            ],
        }
        manifest.update(overrides)
        return manifest

    return _build
