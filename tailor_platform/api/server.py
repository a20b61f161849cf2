from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from tailor_platform.config import Config, load_config
from tailor_platform.db import connect, init_db

from tailor_platform.auth import get_current_user, require_admin, require_subscription
from tailor_platform.auth.crud import (
    bootstrap_admin_if_needed,
    consume_verification_token,
    create_user,
    create_verification_token,
    get_user_by_email,
    get_user_by_id,
    issue_access_token,
    mark_email_verified,
    public_user,
    touch_last_login,
    update_password,
    verify_user_credentials,
)
from tailor_platform.auth.security import verify_password

from tailor_platform.account import profile as account
from tailor_platform.billing import payment_methods as pm
from tailor_platform.billing import subscriptions as billing
from tailor_platform.billing.plans import list_plans, resolve_plan, seed_plans
from tailor_platform.dashboard import service as dashboard
from tailor_platform.jobs.queue import job_counts
from tailor_platform.mail import templates as mail_templates
from tailor_platform.mail.sender import queue_email
from tailor_platform.notifications import service as notifications
from tailor_platform.notifications.generator import run_notification_sweep
from tailor_platform.storage.uploads import resolve_image
from tailor_platform.util.hashing import sha256_hex
from tailor_platform.util.normalization import check_password_strength
from tailor_platform.workshop import clients as clients_svc
from tailor_platform.workshop import measurements as measurements_svc
from tailor_platform.workshop import orders as orders_svc
from tailor_platform.workshop import styles as styles_svc
from tailor_platform.workshop.limits import LimitReached, check_limit


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


app = FastAPI(title="Tailor Platform", version="0.1.0")
cfg: Config = load_config()

# CORS is mainly needed for local development (Nuxt dev server on :3000 -> API on :8000).
_cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def _on_startup() -> None:
    # Make config available to auth deps.
    app.state.cfg = cfg

    # Ensure schema exists.
    init_db(cfg.DB_DSN)

    # Plan catalog is seeded idempotently by slug.
    with connect(cfg.DB_DSN) as conn:
        res = seed_plans(conn)
    _debug(f"Plans seeded: {res}")

    # Bootstrap first admin if needed (only when users table is empty)
    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        _debug(f"Bootstrapped initial admin user: email={boot.get('email')} role={boot.get('role')}")


# -----------------------------
# Error mapping
# -----------------------------

_CONFLICT_CODES = {"email_exists", "client_has_orders", "already_on_plan", "template_exists"}


def _http_error(e: Exception) -> HTTPException:
    """Map service-layer errors onto HTTP errors."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, LimitReached):
        return HTTPException(status_code=403, detail=e.code)
    detail = str(e)
    if detail.endswith("_not_found"):
        return HTTPException(status_code=404, detail=detail)
    if detail in _CONFLICT_CODES:
        return HTTPException(status_code=409, detail=detail)
    return HTTPException(status_code=400, detail=detail)


def _billing_error(e: Exception) -> HTTPException:
    if isinstance(e, (HTTPException, ValueError, LimitReached)):
        return _http_error(e)
    if isinstance(e, RuntimeError):
        # Missing keys -> not configured; anything else is the provider failing.
        detail = str(e)
        return HTTPException(status_code=501 if detail.endswith("_missing") else 502, detail=detail)
    return HTTPException(status_code=500, detail=f"billing_error: {e}")


def _uid(user: Dict[str, Any]) -> int:
    return int(user["user_id"])


# -----------------------------
# Health
# -----------------------------


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Auth
# -----------------------------

def _cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    samesite = str(getattr(cfg, "AUTH_COOKIE_SAMESITE", "lax") or "lax").lower()
    secure = bool(getattr(cfg, "AUTH_COOKIE_SECURE", False))
    # Browsers require Secure when SameSite=None
    if samesite == "none":
        return True
    return secure


def _set_auth_cookies(response: Response, *, token: str, user: Dict[str, Any], cfg: Config) -> None:
    """Set session cookies for browser-based auth."""
    max_age = int(getattr(cfg, "AUTH_TOKEN_EXPIRE_MINUTES", 10080)) * 60
    cookie_name = str(getattr(cfg, "AUTH_COOKIE_NAME", "tp_token") or "tp_token")
    samesite = str(getattr(cfg, "AUTH_COOKIE_SAMESITE", "lax") or "lax").lower()
    domain = getattr(cfg, "AUTH_COOKIE_DOMAIN", None)
    path = str(getattr(cfg, "AUTH_COOKIE_PATH", "/") or "/")
    secure = _cookie_secure(cfg)

    # Auth token cookie (httpOnly)
    response.set_cookie(
        key=cookie_name,
        value=str(token),
        httponly=True,
        samesite=samesite,
        secure=secure,
        max_age=max_age,
        path=path,
        domain=domain,
    )

    # Convenience cookies for route guards in the frontend (not security-critical)
    for key, value in (("tp_role", user.get("role") or ""), ("tp_sub", user.get("subscription_status") or "")):
        response.set_cookie(
            key=key,
            value=str(value),
            httponly=False,
            samesite=samesite,
            secure=secure,
            max_age=max_age,
            path=path,
            domain=domain,
        )


def _clear_auth_cookies(response: Response, cfg: Config) -> None:
    cookie_name = str(getattr(cfg, "AUTH_COOKIE_NAME", "tp_token") or "tp_token")
    domain = getattr(cfg, "AUTH_COOKIE_DOMAIN", None)
    path = str(getattr(cfg, "AUTH_COOKIE_PATH", "/") or "/")
    response.delete_cookie(key=cookie_name, path=path, domain=domain)
    response.delete_cookie(key="tp_role", path=path, domain=domain)
    response.delete_cookie(key="tp_sub", path=path, domain=domain)


def _session(conn: Any, response: Response, user_id: int) -> Dict[str, Any]:
    """Issue a fresh token for the user, set cookies and return the login payload."""
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="user_not_found")
    token = issue_access_token(conn, cfg, row)
    u = public_user(row)
    u["is_admin"] = u.get("role") == "admin"
    _set_auth_cookies(response, token=token, user=u, cfg=cfg)
    return {"access_token": token, "token_type": "bearer", "user": u}


def _queue_verification_email(conn: Any, user: Dict[str, Any]) -> None:
    raw = create_verification_token(
        conn,
        user_id=int(user["user_id"]),
        purpose="email_verify",
        ttl_minutes=int(cfg.VERIFICATION_TOKEN_TTL_HOURS) * 60,
    )
    verify_url = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/verify-email?token={raw}"
    subject, html = mail_templates.email_verification(
        app_name=cfg.APP_NAME, verify_url=verify_url, name=user.get("name")
    )
    queue_email(
        conn,
        to=str(user["email"]),
        to_name=user.get("name"),
        subject=subject,
        html=html,
        dedupe_key=f"verify|{user['user_id']}|{sha256_hex(raw)[:16]}",
        priority=200,
    )


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class CreateUserRequest(BaseModel):
    email: str
    password: str
    name: Optional[str] = None
    role: str = "user"  # admin|user


class TokenRequest(BaseModel):
    token: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


@app.post("/auth/login")
def auth_login(payload: LoginRequest, response: Response) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user_row = verify_user_credentials(conn, payload.email, payload.password)
        if user_row is None:
            raise HTTPException(status_code=401, detail="invalid_credentials")

        touch_last_login(conn, int(user_row["user_id"]))
        return _session(conn, response, int(user_row["user_id"]))


@app.post("/auth/register")
def auth_register(payload: RegisterRequest, response: Response) -> Dict[str, Any]:
    """Create an account, queue the verification email and start a session."""
    with connect(cfg.DB_DSN) as conn:
        try:
            check_password_strength(payload.password)
            u = create_user(conn, email=payload.email, password=payload.password, name=payload.name, role="user")
        except ValueError as e:
            raise _http_error(e)

        _queue_verification_email(conn, u)
        return _session(conn, response, int(u["user_id"]))


@app.post("/auth/logout")
def auth_logout(response: Response) -> Dict[str, Any]:
    """Clear browser session cookies."""
    _clear_auth_cookies(response, cfg)
    return {"ok": True}


@app.get("/auth/me")
def auth_me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"user": user, "subscription": billing.plan_summary(conn, _uid(user))}


@app.post("/auth/verify-email")
def auth_verify_email(payload: TokenRequest, response: Response) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            user_id = consume_verification_token(conn, token=payload.token, purpose="email_verify")
        except ValueError as e:
            raise _http_error(e)
        mark_email_verified(conn, user_id)
        return {"ok": True, **_session(conn, response, user_id)}


@app.post("/auth/resend-verification")
def auth_resend_verification(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("email_verified"):
        return {"ok": True, "already_verified": True}
    with connect(cfg.DB_DSN) as conn:
        _queue_verification_email(conn, user)
    return {"ok": True, "already_verified": False}


@app.post("/auth/forgot-password")
def auth_forgot_password(payload: ForgotPasswordRequest) -> Dict[str, Any]:
    """Always answers ok so the endpoint does not reveal which emails have accounts."""
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_email(conn, payload.email)
        if row is not None and int(row["is_active"] or 0) == 1:
            raw = create_verification_token(
                conn,
                user_id=int(row["user_id"]),
                purpose="password_reset",
                ttl_minutes=int(cfg.RESET_TOKEN_TTL_MINUTES),
            )
            reset_url = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/reset-password?token={raw}"
            subject, html = mail_templates.password_reset(
                app_name=cfg.APP_NAME,
                reset_url=reset_url,
                name=row["name"],
                ttl_minutes=int(cfg.RESET_TOKEN_TTL_MINUTES),
            )
            queue_email(
                conn,
                to=str(row["email"]),
                to_name=row["name"],
                subject=subject,
                html=html,
                dedupe_key=f"reset|{row['user_id']}|{sha256_hex(raw)[:16]}",
                priority=200,
            )
    return {"ok": True}


@app.post("/auth/reset-password")
def auth_reset_password(payload: ResetPasswordRequest) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            check_password_strength(payload.password)
            user_id = consume_verification_token(conn, token=payload.token, purpose="password_reset")
        except ValueError as e:
            raise _http_error(e)
        update_password(conn, user_id=user_id, password=payload.password)
    return {"ok": True}


@app.post("/auth/change-password")
def auth_change_password(
    payload: ChangePasswordRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, _uid(user))
        if row is None or not verify_password(payload.current_password, str(row["password_hash"])):
            raise HTTPException(status_code=400, detail="invalid_current_password")
        try:
            check_password_strength(payload.new_password)
        except ValueError as e:
            raise _http_error(e)
        update_password(conn, user_id=_uid(user), password=payload.new_password)
    return {"ok": True}


# -----------------------------
# Admin
# -----------------------------


@app.post("/admin/users")
def admin_create_user(
    payload: CreateUserRequest,
    _admin: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_user(
                conn,
                email=payload.email,
                password=payload.password,
                name=payload.name,
                role=payload.role,
                email_verified=True,
            )
        except ValueError as e:
            raise _http_error(e)
    return {"user": u}


@app.post("/admin/seed-plans")
def admin_seed_plans(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        res = seed_plans(conn)
        return {"ok": True, **res, "plans": list_plans(conn)}


@app.post("/admin/generate-notifications")
def admin_generate_notifications(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"ok": True, "counts": run_notification_sweep(conn)}


@app.get("/admin/jobs")
def admin_job_counts(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"counts": job_counts(conn)}


# -----------------------------
# Plans
# -----------------------------


@app.get("/plans")
def plans_list(interval: Optional[str] = Query(None, description="monthly|annual")) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"plans": list_plans(conn, interval=interval)}
        except ValueError as e:
            raise _http_error(e)


@app.get("/plans/{plan}")
def plans_get(plan: str, interval: Optional[str] = None) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"plan": resolve_plan(conn, plan, interval=interval)}
        except ValueError as e:
            raise _http_error(e)


# -----------------------------
# Subscriptions (Paystack)
# -----------------------------


class SubscribeRequest(BaseModel):
    plan_id: Union[int, str]
    billing_interval: Optional[str] = None  # monthly|annual
    reference: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    reference: str
    plan_id: Union[int, str]
    billing_interval: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


def _with_session(result: Dict[str, Any], response: Response, user_id: int) -> Dict[str, Any]:
    """Subscription changes re-issue the JWT (plan claims)."""
    if result.get("token"):
        with connect(cfg.DB_DSN) as conn:
            session = _session(conn, response, user_id)
        result = {**result, "token": session["access_token"], "user": session["user"]}
    return result


@app.get("/subscriptions/current")
def subscriptions_current(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return billing.get_current(conn, _uid(user))


@app.post("/subscriptions")
def subscriptions_create(
    payload: SubscribeRequest,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        result = billing.create_subscription(
            cfg,
            user_id=_uid(user),
            plan=payload.plan_id,
            interval=payload.billing_interval,
            reference=payload.reference,
        )
    except Exception as e:
        raise _billing_error(e)
    return _with_session(result, response, _uid(user))


@app.post("/payments/verify")
def payments_verify(
    payload: VerifyPaymentRequest,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Verify a Paystack checkout reference and activate the plan it paid for."""
    try:
        result = billing.verify_payment(
            cfg,
            user_id=_uid(user),
            reference=payload.reference,
            plan=payload.plan_id,
            interval=payload.billing_interval,
        )
    except Exception as e:
        raise _billing_error(e)
    return _with_session(result, response, _uid(user))


@app.post("/subscriptions/cancel")
def subscriptions_cancel(
    payload: CancelRequest,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            result = billing.cancel_subscription(conn, cfg, user_id=_uid(user), reason=payload.reason)
        except ValueError as e:
            raise _http_error(e)
    return _with_session(result, response, _uid(user))


@app.post("/subscriptions/change-plan")
def subscriptions_change_plan(
    payload: SubscribeRequest,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        result = billing.change_plan(
            cfg,
            user_id=_uid(user),
            plan=payload.plan_id,
            interval=payload.billing_interval,
            reference=payload.reference,
        )
    except Exception as e:
        raise _billing_error(e)
    return _with_session(result, response, _uid(user))


@app.get("/subscriptions/billing-history")
def subscriptions_billing_history(
    limit: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"payments": billing.billing_history(conn, _uid(user), limit=limit)}


@app.get("/subscriptions/invoice/{payment_id}", response_class=HTMLResponse)
def subscriptions_invoice(payment_id: int, user: Dict[str, Any] = Depends(get_current_user)) -> HTMLResponse:
    with connect(cfg.DB_DSN) as conn:
        try:
            html = billing.invoice_html(conn, cfg, user_id=_uid(user), payment_id=payment_id)
        except ValueError as e:
            raise _http_error(e)
    return HTMLResponse(content=html)


# -----------------------------
# Payment methods
# -----------------------------


class PaymentMethodRequest(BaseModel):
    provider_id: Optional[str] = None  # Paystack authorization_code
    type: str = "card"  # card|bank_account
    last4: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    brand: Optional[str] = None
    make_default: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class ReferenceRequest(BaseModel):
    reference: str


class VerifyAccountRequest(BaseModel):
    account_number: str
    bank_code: str


@app.get("/subscriptions/payment-methods")
def payment_methods_list(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"payment_methods": pm.list_payment_methods(conn, _uid(user))}


@app.post("/subscriptions/payment-methods")
def payment_methods_add(
    payload: PaymentMethodRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            method = pm.save_payment_method(
                conn,
                user_id=_uid(user),
                provider_id=payload.provider_id,
                type=payload.type,
                last4=payload.last4,
                expiry_month=payload.expiry_month,
                expiry_year=payload.expiry_year,
                brand=payload.brand,
                metadata=payload.metadata,
                make_default=payload.make_default,
            )
        except ValueError as e:
            raise _http_error(e)
        return {"payment_method": method}


@app.delete("/subscriptions/payment-methods/{payment_method_id}")
def payment_methods_delete(payment_method_id: int, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            pm.delete_payment_method(conn, _uid(user), payment_method_id)
        except ValueError as e:
            raise _http_error(e)
        return {"ok": True, "payment_methods": pm.list_payment_methods(conn, _uid(user))}


@app.post("/subscriptions/payment-methods/{payment_method_id}/set-default")
def payment_methods_set_default(
    payment_method_id: int,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"payment_method": pm.set_default_payment_method(conn, _uid(user), payment_method_id)}
        except ValueError as e:
            raise _http_error(e)


@app.post("/payments/authorize-payment-method")
def payments_authorize(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Checkout parameters for a small refundable charge that captures a reusable card."""
    try:
        return pm.init_authorization(cfg, user_id=_uid(user), email=str(user["email"]))
    except Exception as e:
        raise _billing_error(e)


@app.post("/payments/verify-authorization")
def payments_verify_authorization(
    payload: ReferenceRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        return pm.verify_authorization(cfg, user_id=_uid(user), reference=payload.reference)
    except Exception as e:
        raise _billing_error(e)


@app.post("/payments/verify-account")
def payments_verify_account(
    payload: VerifyAccountRequest,
    _user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        return pm.verify_bank_account(cfg, account_number=payload.account_number, bank_code=payload.bank_code)
    except Exception as e:
        raise _billing_error(e)


# -----------------------------
# Clients
# -----------------------------


class ClientRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    gender: Optional[str] = None
    notes: Optional[str] = None
    measurements: Optional[Dict[str, Any]] = None
    measurement_notes: Optional[str] = None


@app.get("/clients")
def clients_list(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, description="name|email|created_at|updated_at"),
    order: Optional[str] = Query(None, description="asc|desc"),
    has_orders: Optional[bool] = None,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return clients_svc.list_clients(
            conn, _uid(user), page=page, limit=limit, search=search, sort=sort, order=order, has_orders=has_orders
        )


@app.post("/clients")
def clients_create(payload: ClientRequest, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"client": clients_svc.create_client(conn, _uid(user), payload.model_dump(exclude_unset=True))}
        except (ValueError, LimitReached) as e:
            raise _http_error(e)


@app.get("/clients/{client_id}")
def clients_get(client_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"client": clients_svc.get_client(conn, _uid(user), client_id)}
        except ValueError as e:
            raise _http_error(e)


@app.put("/clients/{client_id}")
def clients_update(
    client_id: int,
    payload: ClientRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {
                "client": clients_svc.update_client(conn, _uid(user), client_id, payload.model_dump(exclude_unset=True))
            }
        except ValueError as e:
            raise _http_error(e)


@app.delete("/clients/{client_id}")
def clients_delete(client_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            clients_svc.delete_client(conn, _uid(user), client_id)
        except ValueError as e:
            raise _http_error(e)
    return {"ok": True}


# -----------------------------
# Measurements
# -----------------------------


class MeasurementFieldRequest(BaseModel):
    name: str
    description: Optional[str] = None
    unit: Optional[str] = None
    is_required: Optional[bool] = None
    order: Optional[int] = None
    display_order: Optional[int] = None
    category: Optional[str] = None


class TemplateRequest(BaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    gender: Optional[str] = None
    is_archived: Optional[bool] = None
    fields: Optional[List[MeasurementFieldRequest]] = None


class ClientMeasurementRequest(BaseModel):
    template_id: int
    values: Dict[str, Any]
    notes: Optional[str] = None


class MeasurementSettingsRequest(BaseModel):
    default_unit: str


@app.get("/measurement-templates")
def templates_list(
    include_archived: bool = False,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"templates": measurements_svc.list_templates(conn, _uid(user), include_archived=include_archived)}


@app.post("/measurement-templates")
def templates_create(payload: TemplateRequest, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            tpl = measurements_svc.create_template(conn, _uid(user), payload.model_dump(exclude_unset=True))
        except ValueError as e:
            raise _http_error(e)
        row = get_user_by_id(conn, _uid(user))
        return {"template": tpl, "setup_completed": bool(row is not None and int(row["has_completed_setup"] or 0))}


@app.get("/measurement-templates/{template_id}")
def templates_get(template_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"template": measurements_svc.get_template(conn, _uid(user), template_id)}
        except ValueError as e:
            raise _http_error(e)


@app.put("/measurement-templates/{template_id}")
def templates_update(
    template_id: int,
    payload: TemplateRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {
                "template": measurements_svc.update_template(
                    conn, _uid(user), template_id, payload.model_dump(exclude_unset=True)
                )
            }
        except ValueError as e:
            raise _http_error(e)


@app.delete("/measurement-templates/{template_id}")
def templates_delete(template_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            measurements_svc.delete_template(conn, _uid(user), template_id)
        except ValueError as e:
            raise _http_error(e)
    return {"ok": True}


@app.post("/measurement-templates/{template_id}/set-default")
def templates_set_default(template_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"template": measurements_svc.set_default_template(conn, _uid(user), template_id)}
        except ValueError as e:
            raise _http_error(e)


@app.get("/clients/{client_id}/measurements")
def client_measurements_list(client_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"measurements": measurements_svc.list_client_measurements(conn, _uid(user), client_id)}
        except ValueError as e:
            raise _http_error(e)


@app.post("/clients/{client_id}/measurements")
def client_measurements_upsert(
    client_id: int,
    payload: ClientMeasurementRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            m = measurements_svc.upsert_client_measurement(
                conn,
                _uid(user),
                client_id,
                template_id=payload.template_id,
                values=payload.values,
                notes=payload.notes,
            )
        except ValueError as e:
            raise _http_error(e)
        return {"measurement": m}


@app.get("/users/measurement-settings")
def measurement_settings_get(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"settings": measurements_svc.get_settings(conn, _uid(user))}


@app.put("/users/measurement-settings")
def measurement_settings_update(
    payload: MeasurementSettingsRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"settings": measurements_svc.update_settings(conn, _uid(user), default_unit=payload.default_unit)}
        except ValueError as e:
            raise _http_error(e)


# -----------------------------
# Styles
# -----------------------------


class StyleRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None  # data:image/...;base64,... or https URL
    details: Optional[Dict[str, Any]] = None


def _upload(user_id: int, image: Optional[str], folder: str) -> Optional[str]:
    try:
        return resolve_image(cfg, user_id=user_id, image=image, folder=folder)
    except ValueError as e:
        raise _http_error(e)
    except RuntimeError as e:
        raise HTTPException(status_code=501, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"upload_error: {e}")


@app.get("/styles")
def styles_list(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = None,
    sort: Optional[str] = Query(None, description="name|category|created_at|updated_at"),
    order: Optional[str] = Query(None, description="asc|desc"),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return styles_svc.list_styles(
            conn, _uid(user), page=page, limit=limit, search=search, category=category, sort=sort, order=order
        )


@app.post("/styles")
def styles_create(payload: StyleRequest, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    data = payload.model_dump(exclude_unset=True)
    with connect(cfg.DB_DSN) as conn:
        try:
            # Check the plan before uploading anything.
            check_limit(conn, _uid(user), "styles")
            if not (data.get("name") or "").strip():
                raise ValueError("name_required")
            if not (data.get("image") or "").strip():
                raise ValueError("image_required")
        except (ValueError, LimitReached) as e:
            raise _http_error(e)
        image_url = _upload(_uid(user), data.get("image"), "styles")
        try:
            return {"style": styles_svc.create_style(conn, _uid(user), data, image_url=image_url)}
        except (ValueError, LimitReached) as e:
            raise _http_error(e)


@app.get("/styles/{style_id}")
def styles_get(style_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"style": styles_svc.get_style(conn, _uid(user), style_id)}
        except ValueError as e:
            raise _http_error(e)


@app.put("/styles/{style_id}")
def styles_update(
    style_id: int,
    payload: StyleRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    data = payload.model_dump(exclude_unset=True)
    with connect(cfg.DB_DSN) as conn:
        try:
            styles_svc.get_owned_style(conn, _uid(user), style_id)
        except ValueError as e:
            raise _http_error(e)
        image_url = _upload(_uid(user), data.get("image"), "styles") if data.get("image") else None
        try:
            return {"style": styles_svc.update_style(conn, _uid(user), style_id, data, image_url=image_url)}
        except ValueError as e:
            raise _http_error(e)


@app.delete("/styles/{style_id}")
def styles_delete(style_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            styles_svc.delete_style(conn, _uid(user), style_id)
        except ValueError as e:
            raise _http_error(e)
    return {"ok": True}


# -----------------------------
# Orders
# -----------------------------


class OrderRequest(BaseModel):
    client_id: Optional[int] = None
    style_id: Optional[int] = None
    measurement_id: Optional[int] = None
    description: Optional[str] = None
    due_date: Optional[str] = None  # YYYY-MM-DD
    total_amount: Optional[float] = None
    deposit_amount: Optional[float] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class OrderPaymentRequest(BaseModel):
    amount: float
    payment_method: Optional[str] = None  # cash|transfer|card|...
    payment_date: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    currency: Optional[str] = None


@app.get("/orders")
def orders_list(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    client_id: Optional[int] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    due_from: Optional[str] = None,
    due_to: Optional[str] = None,
    sort: Optional[str] = Query(None, description="created_at|updated_at|due_date|status|total_amount|client"),
    order: Optional[str] = Query(None, description="asc|desc"),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return orders_svc.list_orders(
                conn,
                _uid(user),
                page=page,
                limit=limit,
                client_id=client_id,
                status=status,
                search=search,
                due_from=due_from,
                due_to=due_to,
                sort=sort,
                order=order,
            )
        except ValueError as e:
            raise _http_error(e)


@app.post("/orders")
def orders_create(payload: OrderRequest, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"order": orders_svc.create_order(conn, _uid(user), payload.model_dump(exclude_unset=True))}
        except ValueError as e:
            raise _http_error(e)


@app.get("/orders/{order_id}")
def orders_get(order_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"order": orders_svc.get_order(conn, _uid(user), order_id)}
        except ValueError as e:
            raise _http_error(e)


@app.put("/orders/{order_id}")
def orders_update(
    order_id: int,
    payload: OrderRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"order": orders_svc.update_order(conn, _uid(user), order_id, payload.model_dump(exclude_unset=True))}
        except ValueError as e:
            raise _http_error(e)


@app.delete("/orders/{order_id}")
def orders_delete(order_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            orders_svc.delete_order(conn, _uid(user), order_id)
        except ValueError as e:
            raise _http_error(e)
    return {"ok": True}


@app.get("/orders/{order_id}/payments")
def order_payments_list(order_id: int, user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            orders_svc.get_owned_order(conn, _uid(user), order_id)
        except ValueError as e:
            raise _http_error(e)
        return {"payments": orders_svc.list_payments(conn, _uid(user), order_id)}


@app.post("/orders/{order_id}/payments")
def order_payments_record(
    order_id: int,
    payload: OrderPaymentRequest,
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    data = {"order_id": order_id, **payload.model_dump(exclude_unset=True)}
    with connect(cfg.DB_DSN) as conn:
        try:
            payment = orders_svc.record_payment(conn, _uid(user), data, currency=cfg.PAYSTACK_CURRENCY)
        except ValueError as e:
            raise _http_error(e)
        return {"payment": payment, "order": orders_svc.get_order(conn, _uid(user), order_id)}


# -----------------------------
# Account (profile / business / onboarding)
# -----------------------------


class ProfileRequest(BaseModel):
    name: Optional[str] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    years_in_business: Optional[int] = None
    business_description: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    specializations: Optional[Union[List[str], str]] = None
    services: Optional[Union[List[str], str]] = None


class OnboardingStepRequest(BaseModel):
    step: str


class AvatarRequest(BaseModel):
    image: str


@app.get("/profile")
def profile_get(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return account.get_profile(conn, _uid(user))
        except ValueError as e:
            raise _http_error(e)


@app.put("/profile")
def profile_update(payload: ProfileRequest, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return account.update_profile(conn, _uid(user), payload.model_dump(exclude_unset=True))
        except ValueError as e:
            raise _http_error(e)


@app.get("/business")
def business_get(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"business": account.get_business(conn, _uid(user))}


@app.put("/business")
def business_update(payload: ProfileRequest, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    data = payload.model_dump(exclude_unset=True)
    data.pop("name", None)
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"business": account.update_business(conn, _uid(user), data)}
        except ValueError as e:
            raise _http_error(e)


@app.post("/onboarding/step")
def onboarding_step(
    payload: OnboardingStepRequest,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            account.update_onboarding_step(conn, _uid(user), payload.step)
        except ValueError as e:
            raise _http_error(e)
        return _session(conn, response, _uid(user))


@app.post("/users/avatar")
def users_avatar(payload: AvatarRequest, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    url = _upload(_uid(user), payload.image, "avatars")
    if not url:
        raise HTTPException(status_code=400, detail="image_required")
    with connect(cfg.DB_DSN) as conn:
        business = account.set_avatar(conn, _uid(user), url)
    return {"url": url, "business": business}


# -----------------------------
# Notifications
# -----------------------------


@app.get("/notifications")
def notifications_list(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return notifications.list_notifications(conn, _uid(user), unread_only=unread_only, limit=limit)


@app.post("/notifications/read-all")
def notifications_read_all(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"ok": True, "updated": notifications.mark_all_read(conn, _uid(user))}


@app.post("/notifications/{notification_id}/read")
def notifications_read(notification_id: int, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return {"notification": notifications.mark_read(conn, _uid(user), notification_id)}
        except ValueError as e:
            raise _http_error(e)


@app.delete("/notifications/{notification_id}")
def notifications_delete(notification_id: int, user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            notifications.delete_notification(conn, _uid(user), notification_id)
        except ValueError as e:
            raise _http_error(e)
    return {"ok": True}


# -----------------------------
# Dashboard
# -----------------------------


@app.get("/dashboard/stats")
def dashboard_stats(user: Dict[str, Any] = Depends(require_subscription)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return dashboard.stats(conn, _uid(user))


@app.get("/dashboard/recent-activity")
def dashboard_recent_activity(
    limit: int = Query(10, ge=1, le=50),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"items": dashboard.recent_activity(conn, _uid(user), limit=limit)}


@app.get("/dashboard/orders-due-soon")
def dashboard_orders_due_soon(
    limit: int = Query(10, ge=1, le=50),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"items": dashboard.orders_due_soon(conn, _uid(user), limit=limit)}


@app.get("/dashboard/client-growth")
def dashboard_client_growth(
    period: str = Query("30days", description="7days|30days|90days|1year"),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return dashboard.client_growth(conn, _uid(user), period=period)
        except ValueError as e:
            raise _http_error(e)


@app.get("/activity")
def activity_feed(
    type: Optional[str] = Query(None, description="client|order|payment|measurement|all"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    user: Dict[str, Any] = Depends(require_subscription),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            return dashboard.activity(
                conn, _uid(user), type=type, start=start_date, end=end_date, page=page, per_page=per_page
            )
        except ValueError as e:
            raise _http_error(e)
