#!/usr/bin/env python3
"""Run one invoice sweep against the configured schedule store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
BACKEND_SRC = ROOT_DIR / "backend" / "src"
if str(BACKEND_SRC) not in sys.path:
    sys.path.insert(0, str(BACKEND_SRC))

from invoicing_scheduler.config import get_settings, runtime_config_issues
from invoicing_scheduler.mailer import create_mailer
from invoicing_scheduler.runtime import build_runtime
from invoicing_scheduler.store_backends import create_schedule_store


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run every due invoice schedule once and print the sweep summary.")
    parser.add_argument("--list", action="store_true", help="Print schedules instead of running a sweep")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL for this invocation")
    parser.add_argument("--verbose", action="store_true", help="Log at INFO level")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    settings = get_settings()
    database_url = args.database_url or settings.database_url
    issues = runtime_config_issues(settings)
    for issue in issues:
        print(f"warning: {issue}", file=sys.stderr)

    try:
        store = create_schedule_store(backend=settings.store_backend, database_url=database_url)
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.list:
        for schedule in store.list_schedules():
            next_run = schedule.next_run_at.isoformat() if schedule.next_run_at else "-"
            state = "active" if schedule.active else "paused"
            print(f"{schedule.schedule_id:>5}  {schedule.tenant_id or '-':<12} {schedule.cadence:<8} {state:<7} {next_run}  {schedule.name}")
        return 0

    loop, _ = build_runtime(settings, store, create_mailer(settings))
    result = loop.sweep_once()
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 1 if result.failed_count else 0


if __name__ == "__main__":
    raise SystemExit(main())
