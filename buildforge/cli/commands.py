from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator

from buildforge.config import ConfigError, load_config
from buildforge.executor import RunReport, Scheduler
from buildforge.graph import ConfigurationError, Outcome
from buildforge.log import set_level
from buildforge.pipeline import BuildPipeline
from buildforge.tools import ToolError

from .args import build_parser

_LABELS = {
    Outcome.SUCCESS: "OK",
    Outcome.WARNING: "WARN",
    Outcome.FAILURE: "FAIL",
    Outcome.SKIPPED: "SKIP",
    Outcome.NOT_RUN: "----",
}


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        if args.verbose:
            set_level(logging.DEBUG)

        match args.command:
            case "run-once":
                return cmd_run_once(args)
            case "watch":
                return cmd_watch(args)
            case "list":
                return cmd_list(args)
            case "plan":
                return cmd_plan(args)
            case "validate-ascii":
                return cmd_validate_ascii(args)
            case _:
                return 2

    except (ConfigError, ConfigurationError, KeyError) as exc:
        print(str(exc), file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        return 130


def main() -> None:
    raise SystemExit(run_cli())


def cmd_run_once(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    scheduler = Scheduler(max_workers=args.workers)
    with _cancel_on_sigterm(pipeline.cancel):
        report = pipeline.run(args.targets, scheduler=scheduler)
    _print_report(report)
    return 0 if report.ok else 1


def cmd_watch(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    controller = pipeline.watch_controller(
        Scheduler(),
        on_report=_print_report,
        poll_interval=args.poll_interval,
    )
    try:
        with _cancel_on_sigterm(pipeline.cancel):
            controller.run_forever(initial_run=not args.no_initial_run)
    except OSError as exc:
        print(f"watch stopped: {exc}", file=sys.stderr)
        return 1
    finally:
        controller.stop()
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    for tid in pipeline.graph.topo_order():
        print(tid)
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    for idx, stage in enumerate(pipeline.graph.compute_plan(), start=1):
        print(f"stage {idx}: {' '.join(stage)}")
    return 0


def cmd_validate_ascii(args: argparse.Namespace) -> int:
    pipeline = _pipeline(args)
    try:
        result = pipeline.validate_ascii()
    except ToolError as exc:
        for line in exc.errors:
            print(line, file=sys.stderr)
        return 1

    if result.stdout:
        print(result.stdout.rstrip("\n"))
    for line in result.warnings:
        print(line)
    return 0


def _pipeline(args: argparse.Namespace) -> BuildPipeline:
    config = load_config(args.config)
    return BuildPipeline(config)


def _print_report(report: RunReport) -> None:
    for tid in report.order:
        record = report.records[tid]
        label = _LABELS[record.outcome]
        if record.outcome is Outcome.SKIPPED:
            print(f"{label} {tid} ({record.message})")
            continue

        print(f"{label} {tid}, {record.duration_s:.3f}s")
        for line in record.errors:
            print(f"    {line}")
        for line in record.warnings:
            print(f"    {line}")

    print(
        f"{len(report.succeeded)} ok, {len(report.warned)} warned, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )


@contextmanager
def _cancel_on_sigterm(cancel: threading.Event) -> Iterator[None]:
    """Turn SIGTERM into a cancelled run followed by KeyboardInterrupt."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum: int, frame: object) -> None:
        cancel.set()
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)
