import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tailor_platform.billing.plans import seed_plans
from tailor_platform.config import load_config
from tailor_platform.db import connect, init_db, touch_app_config


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        res = seed_plans(conn)
        touch_app_config(conn, "initialized_at")

    print(f"DB initialized: {cfg.DB_DSN} (plans created={res['created']} updated={res['updated']})")


if __name__ == "__main__":
    main()
