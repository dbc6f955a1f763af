#!/usr/bin/env python3
"""
Diagnose the scheduled notification run lock, optionally clear it or run now.

Usage:
    python scripts/diagnose_run_lock.py            # show lock state
    python scripts/diagnose_run_lock.py --unlock   # force-clear a stale lock
    python scripts/diagnose_run_lock.py --run      # run all scan routines once
"""

import argparse
import asyncio
import json

from notifier.logging_config import setup_logging
from notifier.worker.run_lock import LOCK_KEY, RunLockManager
from notifier.worker.tasks import task_runner


async def diagnose(unlock: bool, run: bool) -> None:
    lock_manager = RunLockManager()

    try:
        lock_info = await lock_manager.get_lock_info()
    except Exception as e:
        print(f"Redis unreachable: {e}")
        print("Runs will proceed without the lock; the dedup gate still applies.")
        lock_info = None
    else:
        print("Run Lock Diagnosis")
        print("==================")
        print(f"LOCK_KEY: {LOCK_KEY}")
        if not lock_info:
            print("Lock: none")
        else:
            print("Lock: present")
            print(f"  run_id: {lock_info.get('run_id')}")
            print(f"  started_at: {lock_info.get('started_at')}")
            print(f"  ttl_seconds: {lock_info.get('ttl_seconds')}")

    if lock_info and unlock:
        await lock_manager.force_unlock()
        print("Lock force-cleared.")
    elif lock_info:
        print("")
        print("If no notifier process is running, clear it with --unlock.")

    await lock_manager.close()

    if run:
        setup_logging()
        summary = await task_runner.trigger_scheduled_notifications()
        await task_runner.close()
        print(json.dumps(summary, indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--unlock", action="store_true", help="force-clear the run lock")
    parser.add_argument("--run", action="store_true", help="run the scheduled notifications once")
    args = parser.parse_args()
    asyncio.run(diagnose(args.unlock, args.run))


if __name__ == "__main__":
    main()
