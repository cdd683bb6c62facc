"""Environment helpers shared across runtime modules."""

from __future__ import annotations

from typing import Mapping, MutableMapping
import os

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def env_flag(value: str | None, *, default: bool = False) -> bool:
    token = _normalize(value)
    if not token:
        return default
    if token in TRUTHY:
        return True
    if token in FALSY:
        return False
    return default


def env_int(
    env: Mapping[str, str] | MutableMapping[str, str] | None,
    name: str,
    *,
    default: int,
    minimum: int | None = None,
) -> int:
    data = os.environ if env is None else env
    raw = data.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def env_float(
    env: Mapping[str, str] | MutableMapping[str, str] | None,
    name: str,
    *,
    default: float,
    minimum: float | None = None,
) -> float:
    data = os.environ if env is None else env
    raw = data.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


__all__ = [
    "TRUTHY",
    "FALSY",
    "env_flag",
    "env_int",
    "env_float",
]
