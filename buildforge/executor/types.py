from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from buildforge.graph import ExecutionPlan, Outcome


@dataclass(frozen=True)
class TaskOutcome:
    status: Outcome
    message: str = ""
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()

    @classmethod
    def success(cls, message: str = "") -> TaskOutcome:
        return cls(Outcome.SUCCESS, message)

    @classmethod
    def warning(cls, message: str, warnings: tuple[str, ...] = ()) -> TaskOutcome:
        return cls(Outcome.WARNING, message, tuple(warnings) or (message,))

    @classmethod
    def failure(cls, message: str, errors: tuple[str, ...] = ()) -> TaskOutcome:
        return cls(Outcome.FAILURE, message, (), tuple(errors) or (message,))

    @classmethod
    def skipped(cls, message: str) -> TaskOutcome:
        return cls(Outcome.SKIPPED, message)


@dataclass(frozen=True)
class TaskRecord:
    task_id: str
    outcome: Outcome
    message: str
    warnings: tuple[str, ...]
    errors: tuple[str, ...]
    started_at: float | None
    finished_at: float | None

    @property
    def duration_s(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


@dataclass(frozen=True)
class RunReport:
    plan: ExecutionPlan
    records: Mapping[str, TaskRecord] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def order(self) -> list[str]:
        return self.plan.order()

    def _with(self, outcome: Outcome) -> list[str]:
        return [tid for tid in self.order if self.records[tid].outcome is outcome]

    @property
    def succeeded(self) -> list[str]:
        return self._with(Outcome.SUCCESS)

    @property
    def warned(self) -> list[str]:
        return self._with(Outcome.WARNING)

    @property
    def failed(self) -> list[str]:
        return self._with(Outcome.FAILURE)

    @property
    def skipped(self) -> list[str]:
        return self._with(Outcome.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.failed
