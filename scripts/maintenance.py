#!/usr/bin/env python
"""
Run BetaLift maintenance jobs by hand, outside Celery beat.

Usage:
  python scripts/maintenance.py reconcile [--feedback-id 42]
  python scripts/maintenance.py reconcile-projects [--project-id 7]
  python scripts/maintenance.py cleanup [--days 30]
"""
from __future__ import annotations

import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir)))

from betalift import create_app  # noqa: E402
from betalift.maintenance import (  # noqa: E402
    cleanup_old_notifications,
    reconcile_feedback_counters,
    reconcile_project_counters,
)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="BetaLift maintenance jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", help="Repair feedback vote/comment counters")
    reconcile.add_argument("--feedback-id", type=int, default=None)

    projects = sub.add_parser(
        "reconcile-projects", help="Repair project tester/feedback counters"
    )
    projects.add_argument("--project-id", type=int, default=None)

    cleanup = sub.add_parser("cleanup", help="Delete old read notifications")
    cleanup.add_argument("--days", type=int, default=None)

    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        if args.command == "reconcile":
            repaired = reconcile_feedback_counters(args.feedback_id)
            print(f"Repaired {len(repaired)} feedback row(s): {repaired}")
        elif args.command == "reconcile-projects":
            repaired = reconcile_project_counters(args.project_id)
            print(f"Repaired {len(repaired)} project row(s): {repaired}")
        else:
            days = args.days or app.config["NOTIFICATION_RETENTION_DAYS"]
            print(cleanup_old_notifications(days)["message"])
    return 0


if __name__ == "__main__":
    sys.exit(main())
