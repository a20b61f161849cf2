from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from tailor_platform.config import Config
from tailor_platform.jobs.queue import enqueue_job
from tailor_platform.util.hashing import sha256_hex


def _debug(msg: str) -> None:
    print(f"[mail] {msg}")


class MailRateLimited(RuntimeError):
    """Brevo answered 429. The send should be retried later without counting as a failure."""

    def __init__(self, retry_after_seconds: int):
        super().__init__("brevo_rate_limited")
        self.retry_after_seconds = max(1, int(retry_after_seconds))


def send_email(
    cfg: Config,
    *,
    to: str,
    subject: str,
    html: str,
    to_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Send one transactional email through Brevo. Returns Brevo's response (messageId)."""
    if not cfg.BREVO_API_KEY:
        raise RuntimeError("brevo_api_key_missing")
    if not to:
        raise ValueError("recipient_required")

    recipient: Dict[str, Any] = {"email": to}
    if to_name:
        recipient["name"] = to_name

    url = f"{cfg.BREVO_BASE_URL.rstrip('/')}/smtp/email"
    payload = {
        "sender": {"email": cfg.MAIL_SENDER_EMAIL, "name": cfg.MAIL_SENDER_NAME},
        "to": [recipient],
        "subject": subject,
        "htmlContent": html,
    }
    headers = {"api-key": str(cfg.BREVO_API_KEY), "accept": "application/json", "content-type": "application/json"}
    _debug(f"Sending email to={to} subject={subject!r}")
    r = requests.post(url, json=payload, headers=headers, timeout=30)
    if r.status_code == 429:
        retry_after = str(r.headers.get("Retry-After") or "")
        raise MailRateLimited(int(retry_after) if retry_after.isdigit() else 60)
    if r.status_code not in (200, 201, 202):
        raise RuntimeError(f"brevo_error {r.status_code}: {r.text[:500]}")
    return r.json() if r.text else {}


def queue_email(
    conn: Any,
    *,
    to: str,
    subject: str,
    html: str,
    dedupe_key: str,
    to_name: Optional[str] = None,
    priority: int = 100,
) -> None:
    """Enqueue a SEND_EMAIL job. Requests never talk to the mail provider directly."""
    enqueue_job(
        conn,
        job_type="SEND_EMAIL",
        dedupe_key=f"EMAIL|{dedupe_key}|{sha256_hex(to + subject)[:16]}",
        payload={"to": to, "to_name": to_name, "subject": subject, "html": html},
        priority=priority,
        max_attempts=5,
    )
