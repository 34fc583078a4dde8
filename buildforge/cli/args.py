from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="buildforge")

    parser.add_argument(
        "--config",
        default="buildforge.yml",
        help="Path to config file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug output",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run-once
    run = subparsers.add_parser("run-once", help="Run the full build pipeline")
    run.add_argument(
        "targets",
        nargs="*",
        help="Only run these tasks and what they depend on",
    )
    run.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Maximum number of tasks running at the same time",
    )

    # watch
    watch = subparsers.add_parser(
        "watch", help="Rebuild the watch subset when sources change"
    )
    watch.add_argument(
        "--no-initial-run",
        action="store_true",
        help="Wait for the first change instead of building on start",
    )
    watch.add_argument(
        "--poll-interval",
        type=float,
        default=0.1,
        help="Seconds between filesystem scans",
    )

    # list
    subparsers.add_parser("list", help="List tasks")

    # plan
    subparsers.add_parser("plan", help="Show execution stages")

    # validate-ascii
    subparsers.add_parser(
        "validate-ascii", help="Check sources for non-ASCII characters"
    )

    return parser
