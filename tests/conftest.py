"""
Pytest configuration and shared fixtures for API tests.

Config is read from the environment at import time, so the test environment is set up
before anything from tailor_platform is imported.
"""
import os
import re
import sqlite3
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="tailor_tests_"))

os.environ.pop("TAILOR_DATABASE_URL", None)
os.environ.pop("DATABASE_URL", None)
os.environ["TAILOR_DB_PATH"] = str(_TMP / "test.sqlite")
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["AUTH_COOKIE_SECURE"] = "0"
os.environ["AUTH_BOOTSTRAP_ADMIN_EMAIL"] = "admin@example.com"
os.environ["AUTH_BOOTSTRAP_ADMIN_PASSWORD"] = "Admin#12345"
os.environ["BILLING_DEV_BYPASS"] = "0"
os.environ["PUBLIC_APP_URL"] = "http://localhost:3000"
os.environ["PAYSTACK_PUBLIC_KEY"] = "pk_test_tailor"
os.environ.pop("PAYSTACK_SECRET_KEY", None)
os.environ.pop("BREVO_API_KEY", None)
os.environ.pop("S3_BUCKET", None)

import pytest
from fastapi.testclient import TestClient

from tailor_platform.api.server import app
from tailor_platform.config import load_config
from tailor_platform.db import init_db


STRONG_PASSWORD = "Tailor#2024"

_KEEP_TABLES = {"plans", "app_config"}


def _wipe(db_path: str) -> None:
    init_db(db_path)
    # Plain sqlite3 connection: foreign keys stay off so table order doesn't matter.
    conn = sqlite3.connect(db_path)
    try:
        tables = [
            r[0]
            for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'")
        ]
        for t in tables:
            if t not in _KEEP_TABLES:
                conn.execute(f"DELETE FROM {t}")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def clean_db():
    """Start every test with no users, tenants or jobs (plans stay seeded)."""
    _wipe(load_config().DB_DSN)
    yield


@pytest.fixture
def cfg():
    return load_config()


@pytest.fixture
def client():
    """TestClient for tailor_platform.api.server:app (runs startup: schema, plans, admin bootstrap)."""
    with TestClient(app) as c:
        yield c


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    """Factory: register a user and return {token, user, headers}."""

    def _register(email="ada@example.com", password=STRONG_PASSWORD, name="Ada Stitch"):
        r = client.post("/auth/register", json={"email": email, "password": password, "name": name})
        assert r.status_code == 200, r.text
        body = r.json()
        return {"token": body["access_token"], "user": body["user"], "headers": auth_headers(body["access_token"])}

    return _register


@pytest.fixture
def subscribe(client):
    """Factory: put a registered user on the free Growth plan."""

    def _subscribe(account, plan_id="growth-monthly"):
        r = client.post("/subscriptions", json={"plan_id": plan_id}, headers=account["headers"])
        assert r.status_code == 200, r.text
        return r.json()

    return _subscribe


@pytest.fixture
def tailor(register, subscribe):
    """A registered user with an active free subscription."""
    account = register()
    subscribe(account)
    return account


@pytest.fixture
def admin_headers(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "Admin#12345"})
    assert r.status_code == 200, r.text
    return auth_headers(r.json()["access_token"])


@pytest.fixture
def emailed_token(cfg):
    """Pull the most recent emailed link token (verify-email / reset-password) out of the job queue."""
    from tailor_platform.db import connect

    def _token(path):
        with connect(cfg.DB_DSN) as conn:
            rows = conn.execute(
                "SELECT payload_json FROM jobs WHERE job_type='SEND_EMAIL' ORDER BY job_id DESC"
            ).fetchall()
        for row in rows:
            m = re.search(rf"/{path}\?token=([A-Za-z0-9_\-]+)", row["payload_json"])
            if m:
                return m.group(1)
        raise AssertionError(f"no queued email links to /{path}")

    return _token
