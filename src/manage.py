"""Checkout orchestrator management CLI.

Runs the scheduled recurring-order sweep and resumes stuck checkout sessions
from the command line.

Usage:
    python src/manage.py process-recurring-orders               # Sweep orders due today
    python src/manage.py process-recurring-orders --date 2024-03-01
    python src/manage.py resume-session <session-id>            # Retry the next pending step
"""

import argparse
import asyncio
import json
import sys
from datetime import date


def process_recurring_orders(run_date=None):
    """Run one sweep of the recurring schedule and print its summary."""
    from checkout.domain import checkout
    from checkout.recurring.schedule import RecurringScheduleRunner

    checkout.init()
    with checkout.domain_context():
        summary = asyncio.run(RecurringScheduleRunner().run(today=run_date))

    print(json.dumps(summary, indent=2))
    return 0 if summary["failed"] == 0 else 1


def resume_session(session_id):
    """Resume a checkout session from its first incomplete step."""
    from checkout.domain import checkout
    from checkout.session.orchestrator import CheckoutOrchestrator
    from shared.errors import CheckoutError
    from shared.logging import add_context, clear_context

    checkout.init()
    add_context(session_id=session_id)
    try:
        with checkout.domain_context():
            session = asyncio.run(CheckoutOrchestrator().resume(session_id))
    except CheckoutError as exc:
        print(f"Resume failed: {exc}", file=sys.stderr)
        return 1
    finally:
        clear_context()

    next_step = session.next_step()
    print(f"Session {session.id}: status={session.status}, next_step={next_step.value if next_step else '-'}")
    return 0


def main():
    from checkout.utils.logging import configure_checkout_logging

    parser = argparse.ArgumentParser(description="Checkout orchestrator management")
    parser.add_argument("--verbose", action="store_true", help="Log commerce API requests")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep_parser = subparsers.add_parser("process-recurring-orders", help="Start checkouts for due recurring orders")
    sweep_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Treat this ISO date as today (default: today)",
    )

    resume_parser = subparsers.add_parser("resume-session", help="Resume a failed or partial checkout session")
    resume_parser.add_argument("session_id", help="Checkout session identifier")

    args = parser.parse_args()
    configure_checkout_logging(verbose=args.verbose)

    if args.command == "process-recurring-orders":
        sys.exit(process_recurring_orders(args.date))
    elif args.command == "resume-session":
        sys.exit(resume_session(args.session_id))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
