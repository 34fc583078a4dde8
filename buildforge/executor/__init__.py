from .scheduler import Scheduler
from .types import RunReport, TaskOutcome, TaskRecord

__all__ = ["Scheduler", "RunReport", "TaskOutcome", "TaskRecord"]
