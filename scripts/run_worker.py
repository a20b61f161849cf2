"""Run the background worker (emails + notification sweep).

Usage:
  python scripts/run_worker.py
  python scripts/run_worker.py --only mail
  python scripts/run_worker.py --only maintenance
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tailor_platform.config import load_config
from tailor_platform.db import init_db
from tailor_platform.jobs.worker import MAIL_JOB_TYPES, MAINTENANCE_JOB_TYPES, run_worker_forever


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--only", choices=["mail", "maintenance"], default=None)
    args = ap.parse_args()

    allowed = None
    if args.only == "mail":
        allowed = MAIL_JOB_TYPES
    elif args.only == "maintenance":
        allowed = MAINTENANCE_JOB_TYPES

    cfg = load_config()
    # Ensure DB schema/migrations are applied before the worker starts.
    init_db(cfg.DB_DSN)
    run_worker_forever(cfg.DB_DSN, cfg, allowed_job_types=allowed)


if __name__ == "__main__":
    main()
