from .dag import Action, ExecutionPlan, Task, TaskGraph
from .types import (
    ConfigurationError,
    CycleDetectedError,
    DuplicateOutputError,
    DuplicateTaskError,
    Outcome,
    UnknownDependencyError,
)

__all__ = [
    "Action",
    "ExecutionPlan",
    "Task",
    "TaskGraph",
    "ConfigurationError",
    "CycleDetectedError",
    "DuplicateOutputError",
    "DuplicateTaskError",
    "Outcome",
    "UnknownDependencyError",
]
