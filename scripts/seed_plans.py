import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tailor_platform.billing.plans import list_plans, seed_plans
from tailor_platform.config import load_config
from tailor_platform.db import connect, init_db


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        res = seed_plans(conn)
        plans = list_plans(conn)

    print(f"Plans created={res['created']} updated={res['updated']}")
    for p in plans:
        print(f"  {p['plan_id']:>3}  {p['slug']:<24} {p['price']:>10.2f}  clients={p['max_clients']} styles={p['max_styles']}")


if __name__ == "__main__":
    main()
