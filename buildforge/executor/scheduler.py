from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from types import MappingProxyType

from buildforge.graph import ExecutionPlan, Outcome, Task, TaskGraph
from buildforge.log import get_logger
from buildforge.tools import ToolError, ToolResult

from .types import RunReport, TaskOutcome, TaskRecord

log = get_logger("buildforge.scheduler")

_BLOCKING = (Outcome.FAILURE, Outcome.SKIPPED)


class Scheduler:
    """Runs an execution plan stage by stage.

    Tasks inside a stage share a thread pool sized by the stage width. A stage
    is a barrier: the next one starts only when every task before it is
    terminal. Dependents of a failed or skipped task are skipped, everything
    else still runs.
    """

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers

    def run(
        self,
        graph: TaskGraph,
        plan: ExecutionPlan | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> RunReport:
        if plan is None:
            plan = graph.compute_plan()

        records: dict[str, TaskRecord] = {}

        for idx, stage in enumerate(plan, start=1):
            log.debug("stage %d: %s", idx, " ".join(stage))
            runnable: list[Task] = []

            for tid in stage:
                task = graph.get(tid)
                blocked = [
                    dep
                    for dep in task.deps
                    if dep in records and records[dep].outcome in _BLOCKING
                ]
                if cancel is not None and cancel.is_set():
                    records[tid] = _not_started(tid, "cancelled")
                elif blocked:
                    records[tid] = _not_started(
                        tid, "upstream failed: " + ", ".join(blocked)
                    )
                else:
                    runnable.append(task)

            if not runnable:
                continue

            workers = len(runnable)
            if self.max_workers is not None:
                workers = max(1, min(self.max_workers, workers))

            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {pool.submit(_execute, task): task for task in runnable}
                try:
                    for future in as_completed(futures):
                        record = future.result()
                        records[record.task_id] = record
                except BaseException:
                    # running tools must see the cancel before the pool joins them
                    if cancel is not None:
                        cancel.set()
                    pool.shutdown(wait=False, cancel_futures=True)
                    raise

        for tid, record in records.items():
            graph.get(tid).last_outcome = record.outcome

        ordered = {tid: records[tid] for tid in plan.order()}
        return RunReport(plan, MappingProxyType(ordered))


def _not_started(tid: str, reason: str) -> TaskRecord:
    log.info("skip %s (%s)", tid, reason)
    return TaskRecord(tid, Outcome.SKIPPED, reason, (), (), None, None)


def _execute(task: Task) -> TaskRecord:
    log.debug("start %s", task.name)
    started = time.time()
    try:
        outcome = _normalize(task.action())
    except ToolError as exc:
        outcome = TaskOutcome(Outcome.FAILURE, str(exc), exc.warnings, exc.errors)
    except Exception as exc:
        log.debug("%s raised", task.name, exc_info=True)
        outcome = TaskOutcome.failure(str(exc) or type(exc).__name__)
    finished = time.time()

    for line in outcome.warnings:
        log.warning("%s: %s", task.name, line)
    for line in outcome.errors:
        log.error("%s: %s", task.name, line)

    return TaskRecord(
        task.name,
        outcome.status,
        outcome.message,
        outcome.warnings,
        outcome.errors,
        started,
        finished,
    )


def _normalize(result: object) -> TaskOutcome:
    if result is None:
        return TaskOutcome.success()
    if isinstance(result, TaskOutcome):
        return result
    if isinstance(result, ToolResult):
        if result.warnings:
            return TaskOutcome.warning(result.warnings[0], result.warnings)
        return TaskOutcome.success()
    raise TypeError(f"Unsupported task result: {type(result).__name__}")
