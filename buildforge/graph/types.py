from enum import Enum


class ConfigurationError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class DuplicateTaskError(ConfigurationError):
    def __init__(self, name: str):
        super().__init__(f"Task already registered: {name}")
        self.name = name


class UnknownDependencyError(ConfigurationError):
    def __init__(self, task: str, dependency: str):
        super().__init__(f"Task '{task}' has unknown dependency '{dependency}'")
        self.task = task
        self.dependency = dependency


class DuplicateOutputError(ConfigurationError):
    def __init__(self, output: str, first: str, second: str):
        super().__init__(
            f"Output '{output}' of '{second}' overlaps an output of '{first}'"
        )
        self.output = output
        self.tasks = (first, second)


class CycleDetectedError(ConfigurationError):
    def __init__(self, cycle: list[str]):
        super().__init__("Cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class Outcome(Enum):
    NOT_RUN = "not-run"
    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"
    SKIPPED = "skipped"
