"""Database-backed job queue.

A job is pending until a worker claims it (running), then ends as success or error.
Failed jobs go back to pending with exponential back-off until max_attempts is used up;
deferred jobs (provider rate limits) go back to pending without using an attempt.
`dedupe_key` is unique, so enqueueing the same logical job twice is a no-op.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from tailor_platform.util.time import iso_after, utcnow_iso


JOB_TYPES = ("SEND_EMAIL", "GENERATE_NOTIFICATIONS")
BACKOFF_BASE_SECONDS = 60
_CLAIM_TRIES = 3


def _debug(msg: str) -> None:
    print(f"[jobs] {msg}")


@dataclass(frozen=True)
class Job:
    job_id: int
    job_type: str
    dedupe_key: str
    attempts: int
    max_attempts: int
    priority: int = 100
    payload: Dict[str, Any] = field(default_factory=dict)


def enqueue_job(
    conn: Any,
    *,
    job_type: str,
    dedupe_key: str,
    payload: Dict[str, Any],
    priority: int = 100,
    max_attempts: int = 3,
    run_after: Optional[str] = None,
    requeue_if_exists: bool = False,
) -> bool:
    """Add a job unless one with the same dedupe_key exists. Returns True if a job became pending.

    With requeue_if_exists=True a finished (success/error) job is reset to pending with the new payload.
    """
    if job_type not in JOB_TYPES:
        raise ValueError(f"unknown_job_type: {job_type}")
    now = utcnow_iso()
    body = json.dumps(payload, ensure_ascii=False)

    row = conn.execute(
        """
        INSERT INTO jobs (job_type, status, priority, dedupe_key, payload_json, attempts, max_attempts,
                          created_at, updated_at, run_after)
        VALUES (?, 'pending', ?, ?, ?, 0, ?, ?, ?, ?)
        ON CONFLICT(dedupe_key) DO NOTHING
        RETURNING job_id
        """,
        (job_type, int(priority), dedupe_key, body, int(max_attempts), now, now, run_after),
    ).fetchone()
    if row is not None:
        _debug(f"Enqueued {job_type} job_id={row['job_id']} key={dedupe_key}")
        return True
    if not requeue_if_exists:
        return False

    cur = conn.execute(
        """
        UPDATE jobs
        SET status='pending', priority=?, payload_json=?, attempts=0, max_attempts=?,
            last_error=NULL, updated_at=?, run_after=?
        WHERE dedupe_key=? AND status IN ('success','error')
        """,
        (int(priority), body, int(max_attempts), now, run_after, dedupe_key),
    )
    requeued = bool(cur.rowcount)
    if requeued:
        _debug(f"Requeued {job_type} key={dedupe_key}")
    return requeued


def _next_candidate(conn: Any, now: str, types: list[str]) -> Optional[int]:
    sql = "SELECT job_id FROM jobs WHERE status='pending' AND (run_after IS NULL OR run_after <= ?)"
    params: list[Any] = [now]
    if types:
        sql += f" AND job_type IN ({','.join('?' * len(types))})"
        params.extend(types)
    sql += " ORDER BY priority DESC, created_at ASC, job_id ASC LIMIT 1"
    if getattr(conn, "dialect", "sqlite") == "postgres":
        # Concurrent workers skip rows another transaction is claiming.
        sql += " FOR UPDATE SKIP LOCKED"
    row = conn.execute(sql, tuple(params)).fetchone()
    return None if row is None else int(row["job_id"])


def claim_next_job(conn: Any, *, allowed_job_types: Optional[Iterable[str]] = None) -> Optional[Job]:
    """Move the best runnable job to running and return it, or None when nothing is due."""
    types = sorted({t for t in (allowed_job_types or ()) if t})
    for _ in range(_CLAIM_TRIES):
        now = utcnow_iso()
        job_id = _next_candidate(conn, now, types)
        if job_id is None:
            return None
        row = conn.execute(
            """
            UPDATE jobs SET status='running', updated_at=?
            WHERE job_id=? AND status='pending'
            RETURNING job_id, job_type, dedupe_key, attempts, max_attempts, priority, payload_json
            """,
            (now, job_id),
        ).fetchone()
        if row is not None:
            return Job(
                job_id=int(row["job_id"]),
                job_type=str(row["job_type"]),
                dedupe_key=str(row["dedupe_key"]),
                attempts=int(row["attempts"] or 0),
                max_attempts=int(row["max_attempts"] or 3),
                priority=int(row["priority"] or 0),
                payload=json.loads(row["payload_json"] or "{}"),
            )
        # Another worker won the row; look again.
    return None


def mark_job_success(conn: Any, job_id: int) -> None:
    conn.execute("UPDATE jobs SET status='success', updated_at=? WHERE job_id=?", (utcnow_iso(), int(job_id)))


def mark_job_deferred(conn: Any, job_id: int, reason: str, *, retry_after_seconds: int = 30) -> None:
    conn.execute(
        "UPDATE jobs SET status='pending', last_error=?, updated_at=?, run_after=? WHERE job_id=?",
        (str(reason)[:2000], utcnow_iso(), iso_after(seconds=int(retry_after_seconds)), int(job_id)),
    )


def mark_job_error(conn: Any, job_id: int, err: str, *, retry_after_seconds: int = BACKOFF_BASE_SECONDS) -> None:
    """Count a failed attempt: retry after base * 2^(attempt-1) seconds, or stop at max_attempts."""
    row = conn.execute("SELECT attempts, max_attempts FROM jobs WHERE job_id=?", (int(job_id),)).fetchone()
    if row is None:
        return
    attempts = int(row["attempts"]) + 1
    exhausted = attempts >= int(row["max_attempts"])
    run_after = None if exhausted else iso_after(seconds=int(retry_after_seconds) * 2 ** (attempts - 1))
    conn.execute(
        "UPDATE jobs SET status=?, attempts=?, last_error=?, updated_at=?, run_after=? WHERE job_id=?",
        ("error" if exhausted else "pending", attempts, str(err)[:2000], utcnow_iso(), run_after, int(job_id)),
    )
    if exhausted:
        _debug(f"Job {job_id} failed permanently after {attempts} attempts: {err}")


def job_counts(conn: Any) -> Dict[str, int]:
    rows = conn.execute("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status").fetchall()
    return {str(r["status"]): int(r["n"]) for r in rows}
