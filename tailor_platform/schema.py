"""Database schema for the Tailor Platform.

SQLite is the default engine; Postgres is supported as well.

We intentionally keep timestamps as ISO-8601 TEXT (UTC, with 'Z') for portability and to
avoid timezone surprises across engines. ISO strings sort lexicographically in time order,
so comparisons like `end_date <= now_iso` behave correctly. Calendar dates (order due
dates) are plain YYYY-MM-DD text.

Every tenant-owned row carries user_id (directly, or through its client) and every query
filters on it.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Users / Auth
-- Email + password accounts with a role. We use JWTs for stateless auth and store only
-- password hashes.
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin','user')),
    is_active INTEGER NOT NULL DEFAULT 1,
    email_verified INTEGER NOT NULL DEFAULT 0,
    has_completed_setup INTEGER NOT NULL DEFAULT 0,
    onboarding_step TEXT NOT NULL DEFAULT 'verification', -- verification|subscription|setup|complete
    onboarding_completed_at TEXT,
    subscription_status TEXT, -- mirrors the latest subscription: active|canceled|expired
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active);
CREATE INDEX IF NOT EXISTS idx_users_subscription_status ON users (subscription_status, is_active);

-- Email verification / password reset links (only the sha256 of the token is stored)
CREATE TABLE IF NOT EXISTS verification_tokens (
    token_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    purpose TEXT NOT NULL CHECK (purpose IN ('email_verify','password_reset')),
    token_hash TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_verification_tokens_user ON verification_tokens (user_id, purpose);

-- One business profile per user
CREATE TABLE IF NOT EXISTS businesses (
    business_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE,
    business_name TEXT,
    business_type TEXT,
    years_in_business INTEGER,
    business_description TEXT,
    phone TEXT,
    address TEXT,
    city TEXT,
    state TEXT,
    location TEXT,
    bio TEXT,
    specializations_json TEXT,
    services_json TEXT,
    image TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

-- Plan catalog (seeded by slug)
CREATE TABLE IF NOT EXISTS plans (
    plan_id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT,
    price REAL NOT NULL DEFAULT 0,
    billing_interval TEXT NOT NULL CHECK (billing_interval IN ('monthly','annual')),
    features_json TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    is_featured INTEGER NOT NULL DEFAULT 0,
    max_clients INTEGER NOT NULL DEFAULT -1, -- -1 = unlimited
    max_styles INTEGER NOT NULL DEFAULT -1,
    max_storage INTEGER NOT NULL DEFAULT 100, -- MB
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_plans_active_price ON plans (is_active, price);

CREATE TABLE IF NOT EXISTS subscriptions (
    subscription_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    plan_id INTEGER NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('active','canceled','expired','pending')),
    start_date TEXT NOT NULL,
    end_date TEXT,
    billing_period TEXT NOT NULL CHECK (billing_period IN ('monthly','annual')),
    amount REAL NOT NULL DEFAULT 0,
    next_billing_date TEXT,
    canceled_at TEXT,
    payment_method TEXT,
    payment_reference TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
    FOREIGN KEY (plan_id) REFERENCES plans(plan_id)
);
-- At most one active subscription per user
CREATE UNIQUE INDEX IF NOT EXISTS idx_subscriptions_one_active ON subscriptions (user_id) WHERE status='active';
CREATE INDEX IF NOT EXISTS idx_subscriptions_status_end ON subscriptions (status, end_date);

CREATE TABLE IF NOT EXISTS payment_methods (
    payment_method_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    type TEXT NOT NULL DEFAULT 'card', -- card|bank_account
    last4 TEXT,
    expiry_month TEXT,
    expiry_year TEXT,
    brand TEXT,
    is_default INTEGER NOT NULL DEFAULT 0,
    provider TEXT NOT NULL DEFAULT 'paystack',
    provider_id TEXT, -- Paystack authorization_code
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_payment_methods_provider ON payment_methods (user_id, provider, provider_id);

CREATE TABLE IF NOT EXISTS subscription_payments (
    payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    subscription_id INTEGER,
    amount REAL NOT NULL,
    currency TEXT NOT NULL DEFAULT 'NGN',
    status TEXT NOT NULL, -- successful|failed|refunded
    reference TEXT,
    description TEXT,
    payment_method_id INTEGER,
    provider TEXT NOT NULL DEFAULT 'paystack',
    provider_reference TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
    FOREIGN KEY (subscription_id) REFERENCES subscriptions(subscription_id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_subscription_payments_user ON subscription_payments (user_id, created_at);

-- Paystack reference idempotency (a reference is applied at most once)
CREATE TABLE IF NOT EXISTS paystack_references (
    reference TEXT PRIMARY KEY,
    purpose TEXT NOT NULL, -- subscription|authorization
    user_id INTEGER NOT NULL,
    received_at TEXT NOT NULL
);

-- Workshop: clients
CREATE TABLE IF NOT EXISTS clients (
    client_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    address TEXT,
    gender TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_clients_user_created ON clients (user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_clients_user_name ON clients (user_id, name);

-- Free-form measurements (one row per client)
CREATE TABLE IF NOT EXISTS measurements (
    measurement_id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL UNIQUE,
    values_json TEXT NOT NULL,
    notes TEXT,
    last_updated TEXT NOT NULL,
    FOREIGN KEY (client_id) REFERENCES clients(client_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS measurement_templates (
    template_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    unit TEXT NOT NULL DEFAULT 'in',
    description TEXT,
    gender TEXT NOT NULL DEFAULT 'unisex' CHECK (gender IN ('male','female','unisex')),
    is_default INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, name, gender),
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS measurement_fields (
    field_id INTEGER PRIMARY KEY AUTOINCREMENT,
    template_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    unit TEXT NOT NULL DEFAULT 'in',
    is_required INTEGER NOT NULL DEFAULT 1,
    display_order INTEGER NOT NULL DEFAULT 0,
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (template_id, name),
    FOREIGN KEY (template_id) REFERENCES measurement_templates(template_id) ON DELETE CASCADE
);

-- One measurement record per client per template
CREATE TABLE IF NOT EXISTS client_measurements (
    client_measurement_id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL,
    template_id INTEGER NOT NULL,
    values_json TEXT NOT NULL,
    notes TEXT,
    taken_at TEXT NOT NULL,
    taken_by INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (client_id, template_id),
    FOREIGN KEY (client_id) REFERENCES clients(client_id) ON DELETE CASCADE,
    FOREIGN KEY (template_id) REFERENCES measurement_templates(template_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_measurement_settings (
    user_id INTEGER PRIMARY KEY,
    default_unit TEXT NOT NULL DEFAULT 'in' CHECK (default_unit IN ('in','cm')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

-- Style catalog
CREATE TABLE IF NOT EXISTS styles (
    style_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    image_url TEXT,
    category TEXT,
    details_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_styles_user_created ON styles (user_id, created_at);

-- Orders (owned through their client)
CREATE TABLE IF NOT EXISTS orders (
    order_id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id INTEGER NOT NULL,
    style_id INTEGER,
    measurement_id INTEGER,
    description TEXT,
    due_date TEXT, -- YYYY-MM-DD
    total_amount REAL NOT NULL,
    deposit_amount REAL NOT NULL DEFAULT 0,
    balance_amount REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending','in_progress','processing','ready','completed','delivered','cancelled')),
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (client_id) REFERENCES clients(client_id),
    FOREIGN KEY (style_id) REFERENCES styles(style_id) ON DELETE SET NULL,
    FOREIGN KEY (measurement_id) REFERENCES measurements(measurement_id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS idx_orders_client_status ON orders (client_id, status);
CREATE INDEX IF NOT EXISTS idx_orders_due_date ON orders (due_date);

-- Payments received from clients against an order
CREATE TABLE IF NOT EXISTS order_payments (
    order_payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    amount REAL NOT NULL,
    currency TEXT NOT NULL DEFAULT 'NGN',
    payment_method TEXT,
    payment_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    reference TEXT,
    notes TEXT,
    created_by INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (order_id) REFERENCES orders(order_id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_order_payments_user_date ON order_payments (user_id, payment_date);

-- In-app notifications
CREATE TABLE IF NOT EXISTS notifications (
    notification_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('payment','subscription','usage','system')),
    severity TEXT NOT NULL DEFAULT 'info' CHECK (severity IN ('info','warning','critical')),
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    is_read INTEGER NOT NULL DEFAULT 0,
    action_url TEXT,
    action_text TEXT,
    expires_at TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_notifications_user_created ON notifications (user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_notifications_expires ON notifications (expires_at);

-- Job queue (email delivery, notification sweeps)
CREATE TABLE IF NOT EXISTS jobs (
    job_id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending','running','success','error')),
    priority INTEGER NOT NULL DEFAULT 100,
    dedupe_key TEXT NOT NULL UNIQUE,
    payload_json TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    run_after TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_status_priority ON jobs (status, priority, created_at);
"""


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", out)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
