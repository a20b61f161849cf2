"""Run the notification sweep once (renewal reminders, expiry alerts, usage warnings, cleanup).

Usage:
  python scripts/generate_notifications.py          # run inline
  python scripts/generate_notifications.py --enqueue  # leave it to the worker
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from tailor_platform.config import load_config
from tailor_platform.db import connect, init_db
from tailor_platform.jobs.worker import enqueue_notification_sweep
from tailor_platform.notifications.generator import run_notification_sweep


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--enqueue", action="store_true", help="enqueue a GENERATE_NOTIFICATIONS job instead")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        if args.enqueue:
            created = enqueue_notification_sweep(conn)
            print("Enqueued GENERATE_NOTIFICATIONS" if created else "Sweep already queued for this hour")
            return
        counts = run_notification_sweep(conn)

    for k, v in counts.items():
        print(f"{k}: {v}")


if __name__ == "__main__":
    main()
