#!/usr/bin/env python3
"""
Run delivery pipeline tasks once, outside the API process (cron, debugging, SCHEDULER_ENABLED=false).

Usage: cd backend && python scripts/run_delivery_jobs.py [--tick] [--daily-digest]
       [--weekly-digest] [--sweep] [--stats]
With no flags, prints stats.
"""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.db.session import SessionLocal
from app.models.enums import Frequency
from app.scheduler.delivery_queue_job import get_processor
from app.scheduler.digest_job import run_digest
from app.scheduler.retention_job import run_retention_sweep
from app.services.delivery_queue import queue_stats


def _print_stats() -> None:
    db = SessionLocal()
    try:
        counts = queue_stats(db)
    finally:
        db.close()
    print("Delivery jobs by status:")
    for status, count in counts.items():
        print(f"  {status:<11} {count}")


def main():
    parser = argparse.ArgumentParser(description="Run delivery queue tasks once")
    parser.add_argument("--tick", action="store_true", help="Process one batch of due jobs")
    parser.add_argument("--daily-digest", action="store_true", help="Generate this period's daily digests")
    parser.add_argument("--weekly-digest", action="store_true", help="Generate this period's weekly digests")
    parser.add_argument("--sweep", action="store_true", help="Delete old terminal jobs and expired notifications")
    parser.add_argument("--stats", action="store_true", help="Print job counts per status")
    args = parser.parse_args()

    ran = False
    if args.daily_digest or args.weekly_digest:
        for flag, frequency in ((args.daily_digest, Frequency.DAILY), (args.weekly_digest, Frequency.WEEKLY)):
            if not flag:
                continue
            result = run_digest(frequency)
            if result is None:
                print(f"{frequency.value} digest: lease held by another runner, skipped")
            else:
                print(f"{frequency.value} digest {result.period_key}: created={result.created} already_queued={result.already_queued} opted_out={result.opted_out}")
        ran = True
    if args.tick:
        processor = get_processor()
        processor.start()
        result = processor.tick()
        if result is None:
            print("Tick did not run (no transport configured or lease held elsewhere)")
        else:
            print(f"Tick: selected={result.selected} outcomes={result.outcomes}")
        ran = True
    if args.sweep:
        result = run_retention_sweep()
        print(f"Retention sweep: {result if result is not None else 'lease held elsewhere, skipped'}")
        ran = True
    if args.stats or not ran:
        _print_stats()


if __name__ == "__main__":
    main()
