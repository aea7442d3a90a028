#!/usr/bin/env python3
"""
Operator CLI for the recurring invoice scheduler.

Usage:
    python3 scripts/recurring_scheduler.py init-db            # create tables
    python3 scripts/recurring_scheduler.py run                # driver loop until Ctrl-C
    python3 scripts/recurring_scheduler.py tick --limit 50    # one batch now
    python3 scripts/recurring_scheduler.py due                # list due profiles
    python3 scripts/recurring_scheduler.py runs <profile-id>  # run history

Configuration comes from --config, else $BILLING_CONFIG, else defaults;
$BILLING_DATABASE_URL overrides the database URL.
"""

import argparse
import json
import signal
import sys
import threading
from pathlib import Path
from uuid import UUID

import yaml

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from billing_config import load_config  # noqa: E402
from billing_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from billing_kernel.domain.clock import SystemClock  # noqa: E402
from billing_kernel.logging_config import configure_logging  # noqa: E402
from billing_recurring.orchestrator import RecurringOrchestrator  # noqa: E402
from billing_recurring.services.profile_store import ProfileStore  # noqa: E402
from billing_recurring.services.run_ledger import RunSelector  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recurring invoice scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")
    sub.add_parser("run", help="Run the driver loop until interrupted")

    tick = sub.add_parser("tick", help="Process one batch of due profiles")
    tick.add_argument("--limit", type=int, default=None, help="Batch size (1-100)")

    due = sub.add_parser("due", help="List profiles due now")
    due.add_argument("--limit", type=int, default=None, help="Max rows (1-100)")

    runs = sub.add_parser("runs", help="Show run history of a profile")
    runs.add_argument("profile_id", type=UUID)
    runs.add_argument("--limit", type=int, default=50)

    return parser


def _cmd_run(orchestrator: RecurringOrchestrator) -> int:
    scheduler = orchestrator.create_scheduler()
    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    print(
        f"Scheduler running (every {orchestrator.config.scheduler.tick_interval_seconds}s, "
        f"batch {scheduler.batch_size}). Ctrl-C to stop."
    )
    stopped.wait()
    scheduler.stop()
    return 0


def _cmd_tick(orchestrator: RecurringOrchestrator, limit: int | None) -> int:
    result = orchestrator.process_due_profiles(limit)
    print(json.dumps({
        "processed": result.processed,
        "claimed": result.claimed,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "skipped": result.skipped,
        "lost": result.lost,
        "errors": result.errors,
    }, indent=2))
    return 1 if result.errors else 0


def _cmd_due(session_factory, limit: int | None) -> int:
    session = session_factory()
    try:
        profiles = ProfileStore(session).find_due(SystemClock().now(), limit)
    finally:
        session.close()

    if not profiles:
        print("No profiles due.")
        return 0

    print(f"{'PROFILE':<38} {'UNIT':<6} {'EVERY':>5} {'NEXT RUN':<26} {'VER':>4}")
    for p in profiles:
        print(
            f"{str(p.profile_id):<38} {p.interval_unit.value:<6} {p.interval_count:>5} "
            f"{p.next_run_at.isoformat():<26} {p.version:>4}"
        )
    return 0


def _cmd_runs(session_factory, profile_id: UUID, limit: int) -> int:
    session = session_factory()
    try:
        runs = RunSelector(session).list_for_profile(profile_id, limit)
    finally:
        session.close()

    if not runs:
        print(f"No runs recorded for {profile_id}.")
        return 0

    for run in runs:
        detail = str(run.invoice_id) if run.invoice_id else (run.error_message or "")
        print(f"{run.run_at.isoformat():<26} {run.status.value:<8} {detail}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    session_factory = get_session_factory()
    orchestrator = RecurringOrchestrator(session_factory, config=config)

    if args.command == "init-db":
        create_tables()
        print("Tables created.")
        return 0
    if args.command == "run":
        return _cmd_run(orchestrator)
    if args.command == "tick":
        return _cmd_tick(orchestrator, args.limit)
    if args.command == "due":
        return _cmd_due(session_factory, args.limit)
    return _cmd_runs(session_factory, args.profile_id, args.limit)


if __name__ == "__main__":
    sys.exit(main())
