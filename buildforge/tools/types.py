from dataclasses import dataclass, field


@dataclass(frozen=True)
class InputSpec:
    inputs: tuple[str, ...] = ()
    output: str | None = None
    cwd: str | None = None
    extra: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    artifacts: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    stdout: str = ""


class ToolError(Exception):
    """An external tool reported one or more errors.

    `errors` and `warnings` hold the tool's diagnostics verbatim.
    """

    def __init__(
        self,
        tool: str,
        errors: list[str] | tuple[str, ...],
        warnings: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.tool = tool
        self.errors = tuple(errors)
        self.warnings = tuple(warnings)
        first = self.errors[0] if self.errors else "unknown error"
        super().__init__(f"{tool} failed: {first}")
