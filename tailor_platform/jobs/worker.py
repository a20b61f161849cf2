"""Background worker: delivers queued email and runs the notification sweep.

scripts/run_worker.py starts `run_worker_forever`; tests drive `run_one_job` directly.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Set

from tailor_platform.config import Config
from tailor_platform.db import connect
from tailor_platform.jobs.queue import (
    claim_next_job,
    enqueue_job,
    mark_job_deferred,
    mark_job_error,
    mark_job_success,
)
from tailor_platform.mail.sender import MailRateLimited, send_email
from tailor_platform.notifications.generator import run_notification_sweep
from tailor_platform.util.time import utcnow


MAIL_JOB_TYPES: Set[str] = {"SEND_EMAIL"}
MAINTENANCE_JOB_TYPES: Set[str] = {"GENERATE_NOTIFICATIONS"}

MIN_SWEEP_INTERVAL_SECONDS = 60


def _debug(msg: str) -> None:
    print(f"[worker] {msg}")


class JobDeferred(Exception):
    """Put the job back to pending after `retry_after_seconds` without counting an attempt."""

    def __init__(self, reason: str, *, retry_after_seconds: int = 30):
        super().__init__(reason)
        self.reason = str(reason)
        self.retry_after_seconds = int(retry_after_seconds)


def _send_email_job(conn: Any, cfg: Config, payload: Dict[str, Any]) -> None:
    to = str(payload.get("to") or "")
    if not to:
        raise ValueError("recipient_required")
    try:
        send_email(
            cfg,
            to=to,
            subject=str(payload.get("subject") or ""),
            html=str(payload.get("html") or ""),
            to_name=payload.get("to_name"),
        )
    except MailRateLimited as e:
        raise JobDeferred("brevo_rate_limited", retry_after_seconds=e.retry_after_seconds)


def _notification_sweep_job(conn: Any, cfg: Config, payload: Dict[str, Any]) -> None:
    run_notification_sweep(conn)


HANDLERS: Dict[str, Callable[[Any, Config, Dict[str, Any]], None]] = {
    "SEND_EMAIL": _send_email_job,
    "GENERATE_NOTIFICATIONS": _notification_sweep_job,
}


def enqueue_notification_sweep(conn: Any) -> bool:
    """At most one sweep job per UTC hour."""
    return enqueue_job(
        conn,
        job_type="GENERATE_NOTIFICATIONS",
        dedupe_key=f"GENERATE_NOTIFICATIONS|{utcnow():%Y-%m-%dT%H}",
        payload={},
        priority=10,
    )


def run_one_job(conn: Any, cfg: Config, *, allowed_job_types: Optional[Set[str]] = None) -> Optional[int]:
    """Claim and run one job. Returns its id, or None when nothing is runnable."""
    job = claim_next_job(conn, allowed_job_types=allowed_job_types)
    if job is None:
        return None

    _debug(f"job_id={job.job_id} {job.job_type} attempt {job.attempts + 1}/{job.max_attempts}")
    handler = HANDLERS.get(job.job_type)
    try:
        if handler is None:
            raise ValueError(f"unknown_job_type: {job.job_type}")
        handler(conn, cfg, job.payload)
    except JobDeferred as e:
        _debug(f"job_id={job.job_id} deferred {e.retry_after_seconds}s: {e.reason}")
        mark_job_deferred(conn, job.job_id, e.reason, retry_after_seconds=e.retry_after_seconds)
    except Exception as e:
        _debug(f"job_id={job.job_id} failed: {e}")
        # Discard the handler's partial writes; the claim is rewritten by mark_job_error.
        conn.rollback()
        mark_job_error(conn, job.job_id, str(e))
    else:
        mark_job_success(conn, job.job_id)
    return job.job_id


def run_pending_jobs(conn: Any, cfg: Config, *, max_jobs: int = 100, allowed_job_types: Optional[Set[str]] = None) -> int:
    """Run runnable jobs until the queue is empty or max_jobs ran. Returns the count."""
    ran = 0
    while ran < int(max_jobs) and run_one_job(conn, cfg, allowed_job_types=allowed_job_types) is not None:
        ran += 1
    return ran


def run_worker_forever(
    db_dsn: str,
    cfg: Config,
    *,
    allowed_job_types: Optional[Set[str]] = None,
    enable_sweep: Optional[bool] = None,
) -> None:
    """Poll the queue forever, one job per transaction.

    The sweep is scheduled from here only when this worker may run GENERATE_NOTIFICATIONS
    (unless enable_sweep says otherwise) and ENABLE_NOTIFICATION_SWEEP is on.
    """
    if enable_sweep is None:
        enable_sweep = not allowed_job_types or bool(MAINTENANCE_JOB_TYPES & set(allowed_job_types))
    enable_sweep = enable_sweep and cfg.ENABLE_NOTIFICATION_SWEEP
    interval = max(MIN_SWEEP_INTERVAL_SECONDS, int(cfg.NOTIFICATION_SWEEP_INTERVAL_SECONDS))
    _debug(
        f"started db={db_dsn} types={sorted(allowed_job_types) if allowed_job_types else 'all'} "
        f"sweep={'every %ss' % interval if enable_sweep else 'off'}"
    )

    next_sweep = time.monotonic()
    while True:
        with connect(db_dsn) as conn:
            if enable_sweep and time.monotonic() >= next_sweep:
                next_sweep = time.monotonic() + interval
                if enqueue_notification_sweep(conn):
                    _debug("queued notification sweep")
        with connect(db_dsn) as conn:
            ran = run_one_job(conn, cfg, allowed_job_types=allowed_job_types)
        if ran is None:
            time.sleep(cfg.WORKER_POLL_SECONDS)
