from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Optional, Union

SCHEMA_DIR = Path(__file__).resolve().parent / "schema"
DEFAULT_DB_PATH = "./artifacts/dreamcut.db"


def get_conn(path: Optional[Union[str, Path]] = None) -> sqlite3.Connection:
    """Return a sqlite3.Connection for the given path.

    If `path` is None the function will consult the `DREAMCUT_DB_PATH`
    environment variable and fall back to `./artifacts/dreamcut.db`.
    The connection runs in autocommit mode; callers open explicit
    transactions where they need them. The caller is responsible for
    calling `ensure_schema` once.
    """

    if path is None:
        path = os.environ.get("DREAMCUT_DB_PATH") or DEFAULT_DB_PATH
    target = str(path)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target, timeout=5.0, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def ensure_schema(conn: sqlite3.Connection, ddl: Optional[str] = None) -> None:
    """Ensure the DB schema exists.

    If `ddl` is None the packaged `schema/jobs.sql` is applied.
    """

    if ddl is None:
        ddl = (SCHEMA_DIR / "jobs.sql").read_text(encoding="utf-8")
    conn.executescript(ddl)


__all__ = ["get_conn", "ensure_schema", "SCHEMA_DIR"]
