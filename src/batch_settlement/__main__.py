"""
Entry point for running batch_settlement as a module.

Usage:
    python -m batch_settlement [command] [options]

Commands:
    work                    Start the long-running worker (default)
    run BATCH_ID            Run one batch in the foreground
    cancel BATCH_ID         Cancel a PENDING or RUNNING batch
    progress BATCH_ID       Show batch progress
    results BATCH_ID        Show batch summary with every trade
    search                  Search batches (--status, --from, --to, --page, --limit)
    next                    Show the next eligible batch
    priority BATCH_ID N     Set batch priority (clamped to the configured range)
    sweep                   Clear expired batch locks
    locks                   List batches with a live lock
    notify                  Deliver pending notifications once

Options:
    --env ENV           Environment (development/production)
    --holder-id ID      Lock holder id (default: generated per process)

Exit codes:
    0 success, 1 error, 2 configuration error, 3 batch locked by another worker
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Batch Settlement Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--env", default=None, help="Environment (development/production)")
    parser.add_argument("--holder-id", default=None, help="Lock holder id")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("work", help="Start the long-running worker (default)")

    for name, help_text in (
        ("run", "Run one batch in the foreground"),
        ("cancel", "Cancel a batch"),
        ("progress", "Show batch progress"),
        ("results", "Show batch summary with every trade"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("batch_id", type=int)

    priority = sub.add_parser("priority", help="Set batch priority")
    priority.add_argument("batch_id", type=int)
    priority.add_argument("priority", type=int)

    search = sub.add_parser("search", help="Search batches")
    search.add_argument("--status", default=None, help="Batch status, e.g. PENDING")
    search.add_argument("--from", dest="date_from", type=date.fromisoformat, help="Created on or after (YYYY-MM-DD)")
    search.add_argument("--to", dest="date_to", type=date.fromisoformat, help="Created on or before (YYYY-MM-DD)")
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--limit", type=int, default=20)

    sub.add_parser("next", help="Show the next eligible batch")
    sub.add_parser("sweep", help="Clear expired batch locks")
    sub.add_parser("locks", help="List batches with a live lock")
    sub.add_parser("notify", help="Deliver pending notifications once")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = args.command or "work"

    # Import here to avoid slow startup for --help
    from batch_settlement.app import run as commands

    try:
        if command == "work":
            return asyncio.run(commands.run_worker(env=args.env, holder_id=args.holder_id))
        elif command == "run":
            return asyncio.run(commands.run_batch(args.batch_id, env=args.env, holder_id=args.holder_id))
        elif command == "cancel":
            return asyncio.run(commands.run_cancel(args.batch_id, env=args.env))
        elif command == "progress":
            return asyncio.run(commands.run_progress(args.batch_id, env=args.env))
        elif command == "results":
            return asyncio.run(commands.run_results(args.batch_id, env=args.env))
        elif command == "search":
            return asyncio.run(
                commands.run_search(
                    env=args.env,
                    status=args.status,
                    date_from=args.date_from,
                    date_to=args.date_to,
                    page=args.page,
                    limit=args.limit,
                )
            )
        elif command == "next":
            return asyncio.run(commands.run_next(env=args.env))
        elif command == "priority":
            return asyncio.run(commands.run_set_priority(args.batch_id, args.priority, env=args.env))
        elif command == "sweep":
            return asyncio.run(commands.run_sweep(env=args.env))
        elif command == "locks":
            return asyncio.run(commands.run_list_locks(env=args.env))
        elif command == "notify":
            return asyncio.run(commands.run_notify(env=args.env))
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
