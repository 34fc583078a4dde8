from .adapter import (
    CallableToolAdapter,
    CommandToolAdapter,
    ExternalToolAdapter,
    import_callable,
    spec_env,
    split_diagnostics,
)
from .types import InputSpec, ToolError, ToolResult

__all__ = [
    "CallableToolAdapter",
    "CommandToolAdapter",
    "ExternalToolAdapter",
    "import_callable",
    "spec_env",
    "split_diagnostics",
    "InputSpec",
    "ToolError",
    "ToolResult",
]
