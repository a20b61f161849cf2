import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Values already in the environment win over the local .env file.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean env var (1/true/yes/y/on, 0/false/no/n/off); anything else -> default."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Settings for the API, the worker and the scripts. Secrets come from the environment or .env."""

    # -----------------
    # Core
    # -----------------
    # Preferred: set TAILOR_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: TAILOR_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("TAILOR_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("TAILOR_DB_PATH", "./tailor_platform.sqlite")
    )

    APP_NAME: str = os.environ.get("APP_NAME", "Tailor Platform")

    # Worker
    WORKER_POLL_SECONDS: float = float(os.environ.get("WORKER_POLL_SECONDS", "1.0"))

    # Periodic notification sweep (payment reminders, expirations, usage warnings).
    ENABLE_NOTIFICATION_SWEEP: bool = _env_bool("ENABLE_NOTIFICATION_SWEEP", True) is True
    NOTIFICATION_SWEEP_INTERVAL_SECONDS: int = int(
        os.environ.get("NOTIFICATION_SWEEP_INTERVAL_SECONDS", "3600")
    )

    # -----------------
    # Auth (JWT)
    # -----------------
    # The default only suits local development.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days

    # Created on startup while the users table is empty.
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "Admin#12345")

    # Email verification / password reset links
    VERIFICATION_TOKEN_TTL_HOURS: int = int(os.environ.get("VERIFICATION_TOKEN_TTL_HOURS", "24"))
    RESET_TOKEN_TTL_MINUTES: int = int(os.environ.get("RESET_TOKEN_TTL_MINUTES", "60"))

    # httpOnly session cookie set by login/register; Bearer headers work too.
    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "tp_token")
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # Unset AUTH_COOKIE_SECURE follows the scheme of PUBLIC_APP_URL. SameSite=None needs Secure.
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:3000")
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else PUBLIC_APP_URL.lower().startswith("https://")
    )

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )

    # -----------------
    # Billing (Paystack)
    # -----------------
    PAYSTACK_SECRET_KEY: str | None = os.environ.get("PAYSTACK_SECRET_KEY")
    PAYSTACK_PUBLIC_KEY: str | None = os.environ.get("PAYSTACK_PUBLIC_KEY")
    PAYSTACK_BASE_URL: str = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYSTACK_CURRENCY: str = os.environ.get("PAYSTACK_CURRENCY", "NGN")

    # Amount (kobo) charged, then refunded, when a card is authorized for later billing.
    PAYMENT_AUTH_AMOUNT_KOBO: int = int(os.environ.get("PAYMENT_AUTH_AMOUNT_KOBO", "5000"))

    # 1 = every signed-in user passes the subscription check (local development).
    BILLING_DEV_BYPASS: bool = _env_bool("BILLING_DEV_BYPASS", False) is True

    # -----------------
    # Mail (Brevo)
    # -----------------
    BREVO_API_KEY: str | None = os.environ.get("BREVO_API_KEY")
    BREVO_BASE_URL: str = os.environ.get("BREVO_BASE_URL", "https://api.brevo.com/v3")
    MAIL_SENDER_EMAIL: str = os.environ.get("MAIL_SENDER_EMAIL", "no-reply@example.com")
    MAIL_SENDER_NAME: str = os.environ.get("MAIL_SENDER_NAME", "Tailor Platform")

    # -----------------
    # Object storage (S3 compatible)
    # -----------------
    S3_BUCKET: str | None = os.environ.get("S3_BUCKET")
    S3_REGION: str = os.environ.get("S3_REGION", "us-east-1")
    S3_ENDPOINT_URL: str | None = (os.environ.get("S3_ENDPOINT_URL") or "").strip() or None
    S3_ACCESS_KEY_ID: str | None = os.environ.get("S3_ACCESS_KEY_ID")
    S3_SECRET_ACCESS_KEY: str | None = os.environ.get("S3_SECRET_ACCESS_KEY")
    # Public URL prefix for uploaded objects (CDN / custom domain). Optional.
    S3_PUBLIC_BASE_URL: str | None = (os.environ.get("S3_PUBLIC_BASE_URL") or "").strip() or None
    S3_FORCE_PATH_STYLE: bool = _env_bool("S3_FORCE_PATH_STYLE", False) is True


def load_config() -> Config:
    return Config()
