from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from ..errors import ClaimConflict, UnknownJobError
from ..jobs import Job, claim_job
from .sqlite import ensure_schema, get_conn


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _dump(job: Job) -> str:
    return json.dumps(job.model_dump(mode="json"), sort_keys=True)


def _load(row: sqlite3.Row) -> Job:
    return Job.model_validate(json.loads(row["doc"]))


class SqliteJobStore:
    """SQLite-backed job store.

    Claims run inside ``BEGIN IMMEDIATE`` so the select-then-update is
    serialized against every other writer, including other processes sharing
    the database file. A thread lock serializes use of the shared connection
    within one process.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        self._conn = get_conn(db_path)
        self._lock = threading.RLock()
        ensure_schema(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def insert(self, jobs: Sequence[Job]) -> None:
        with self._immediate() as conn:
            try:
                conn.executemany(
                    "INSERT INTO jobs (id, brief_id, type, status, priority, attempts, created_at, not_before, doc) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            job.id,
                            job.brief_id,
                            job.type,
                            job.status,
                            job.priority,
                            job.attempts,
                            _ts(job.created_at),
                            _ts(job.not_before),
                            _dump(job),
                        )
                        for job in jobs
                    ],
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"duplicate job id in batch: {exc}") from exc

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute("SELECT doc FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else _load(row)

    def claim_next(self, worker_id: str, now: datetime) -> Optional[Job]:
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT doc FROM jobs WHERE status = 'pending' AND (not_before IS NULL OR not_before <= ?) "
                "ORDER BY priority DESC, created_at ASC, seq ASC LIMIT 1",
                (_ts(now),),
            ).fetchone()
            if row is None:
                return None
            claimed = claim_job(_load(row), worker_id, now=now)
            cur = conn.execute(
                "UPDATE jobs SET status = ?, attempts = ?, not_before = NULL, doc = ? WHERE id = ? AND status = 'pending'",
                (claimed.status, claimed.attempts, _dump(claimed), claimed.id),
            )
            if cur.rowcount != 1:
                raise ClaimConflict(f"job {claimed.id} changed during an exclusive claim")
            return claimed

    def replace(self, job: Job, *, expected_status: str, expected_attempts: int) -> bool:
        with self._immediate() as conn:
            cur = conn.execute(
                "UPDATE jobs SET status = ?, attempts = ?, not_before = ?, doc = ? "
                "WHERE id = ? AND status = ? AND attempts = ?",
                (job.status, job.attempts, _ts(job.not_before), _dump(job), job.id, expected_status, expected_attempts),
            )
            if cur.rowcount == 1:
                return True
            exists = conn.execute("SELECT 1 FROM jobs WHERE id = ?", (job.id,)).fetchone()
        if exists is None:
            raise UnknownJobError(job.id)
        return False

    def list(self, statuses: Optional[Sequence[str]] = None, brief_id: Optional[str] = None) -> List[Job]:
        clauses: List[str] = []
        params: List[object] = []
        if statuses is not None:
            if not statuses:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if brief_id is not None:
            clauses.append("brief_id = ?")
            params.append(brief_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(f"SELECT doc FROM jobs{where} ORDER BY seq ASC", params).fetchall()
        return [_load(row) for row in rows]


__all__ = ["SqliteJobStore"]
