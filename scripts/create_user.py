"""Create a user in the configured DB.

Usage:
  python scripts/create_user.py --email alice@example.com --password '...' --name Alice --role user

Users created here are marked email-verified.

NOTE: This is intended for local/dev.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tailor_platform.config import load_config
from tailor_platform.db import init_db, connect
from tailor_platform.auth.crud import create_user


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--name", default=None)
    ap.add_argument("--role", choices=["user", "admin"], default="user")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            email=args.email,
            password=args.password,
            name=args.name,
            role=args.role,
            email_verified=True,
        )

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
