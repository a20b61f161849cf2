"""
Tests for registration, login, email verification and password flows.
"""
from conftest import STRONG_PASSWORD, auth_headers


def test_health(client):
    """GET /health is public."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_register_returns_session_and_queues_verification(client, cfg):
    """Registering normalizes the email, starts a session and queues the verification email."""
    r = client.post(
        "/auth/register",
        json={"email": "  Ada@Example.COM ", "password": STRONG_PASSWORD, "name": "Ada"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["email_verified"] is False
    assert body["user"]["onboarding_step"] == "verification"
    assert "password_hash" not in body["user"]
    assert r.cookies.get(cfg.AUTH_COOKIE_NAME)

    from tailor_platform.db import connect

    with connect(cfg.DB_DSN) as conn:
        jobs = conn.execute("SELECT job_type, status FROM jobs").fetchall()
    assert [(j["job_type"], j["status"]) for j in jobs] == [("SEND_EMAIL", "pending")]


def test_register_duplicate_email_conflicts(client, register):
    """A second account with the same email is rejected with 409."""
    register(email="dup@example.com")
    r = client.post("/auth/register", json={"email": "DUP@example.com", "password": STRONG_PASSWORD})
    assert r.status_code == 409
    assert r.json()["detail"] == "email_exists"


def test_register_rejects_weak_passwords(client):
    """Passwords need 8+ chars with upper, lower, digit and a special character."""
    r = client.post("/auth/register", json={"email": "a@example.com", "password": "Ab#1"})
    assert r.status_code == 400
    assert r.json()["detail"] == "password_too_short"

    r = client.post("/auth/register", json={"email": "a@example.com", "password": "weakpassword1"})
    assert r.status_code == 400
    assert r.json()["detail"] == "password_too_weak"


def test_register_rejects_invalid_email(client):
    r = client.post("/auth/register", json={"email": "not-an-email", "password": STRONG_PASSWORD})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_email"


def test_login(client, register):
    """Login succeeds with the right password and fails with 401 otherwise."""
    register(email="login@example.com")

    r = client.post("/auth/login", json={"email": "login@example.com", "password": "Wrong#Pass1"})
    assert r.status_code == 401
    assert r.json()["detail"] == "invalid_credentials"

    r = client.post("/auth/login", json={"email": "LOGIN@example.com", "password": STRONG_PASSWORD})
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "login@example.com"
    assert r.json()["access_token"]


def test_me_requires_token(client):
    """Without a bearer token or session cookie /auth/me is 401."""
    client.cookies.clear()
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json()["detail"] == "missing_token"

    r = client.get("/auth/me", headers=auth_headers("garbage"))
    assert r.status_code == 401
    assert r.json()["detail"] == "token_invalid"


def test_me_returns_user_and_plan_summary(client, register):
    account = register()
    r = client.get("/auth/me", headers=account["headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["is_admin"] is False
    assert body["subscription"]["active"] is False
    assert body["subscription"]["plan_name"] == "Free Plan"


def test_cookie_session_authenticates(client, register):
    """The httpOnly cookie set at registration is enough to call authenticated endpoints."""
    register(email="cookie@example.com")
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "cookie@example.com"


def test_logout_clears_cookie(client, register):
    register()
    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    r = client.get("/auth/me")
    assert r.status_code == 401


def test_verify_email_flow(client, register, emailed_token):
    """The emailed token verifies the account once; reuse is rejected."""
    account = register()
    token = emailed_token("verify-email")

    r = client.post("/auth/verify-email", json={"token": token})
    assert r.status_code == 200, r.text
    assert r.json()["user"]["email_verified"] is True

    r = client.post("/auth/verify-email", json={"token": token})
    assert r.status_code == 400
    assert r.json()["detail"] == "token_used"

    r = client.post("/auth/resend-verification", headers=account["headers"])
    assert r.status_code == 200
    assert r.json()["already_verified"] is True


def test_verify_email_rejects_unknown_token(client):
    r = client.post("/auth/verify-email", json={"token": "nope"})
    assert r.status_code == 400
    assert r.json()["detail"] == "token_invalid"


def test_forgot_password_never_reveals_accounts(client):
    """Unknown emails still get {ok: true}."""
    r = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_reset_password_flow(client, register, emailed_token):
    register(email="reset@example.com")
    r = client.post("/auth/forgot-password", json={"email": "reset@example.com"})
    assert r.status_code == 200
    token = emailed_token("reset-password")

    r = client.post("/auth/reset-password", json={"token": token, "password": "weak"})
    assert r.status_code == 400

    r = client.post("/auth/reset-password", json={"token": token, "password": "Brand#New99"})
    assert r.status_code == 200

    r = client.post("/auth/login", json={"email": "reset@example.com", "password": "Brand#New99"})
    assert r.status_code == 200


def test_change_password(client, register):
    account = register()
    r = client.post(
        "/auth/change-password",
        json={"current_password": "Wrong#Pass1", "new_password": "Other#Pass22"},
        headers=account["headers"],
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_current_password"

    r = client.post(
        "/auth/change-password",
        json={"current_password": STRONG_PASSWORD, "new_password": "Other#Pass22"},
        headers=account["headers"],
    )
    assert r.status_code == 200
    r = client.post("/auth/login", json={"email": "ada@example.com", "password": "Other#Pass22"})
    assert r.status_code == 200


def test_admin_endpoints_require_admin(client, register, admin_headers):
    """Regular users get 403; the bootstrapped admin can create users and inspect the queue."""
    account = register()
    r = client.get("/admin/jobs", headers=account["headers"])
    assert r.status_code == 403
    assert r.json()["detail"] == "admin_required"

    r = client.get("/admin/jobs", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["counts"].get("pending") == 1

    r = client.post(
        "/admin/users",
        json={"email": "staff@example.com", "password": STRONG_PASSWORD, "role": "user"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["user"]["email_verified"] is True
