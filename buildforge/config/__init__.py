from .loader import load_config, read_mapping
from .types import (
    BuildConfig,
    ConfigError,
    PathsConfig,
    ToolConfig,
    UnsupportedConfigFormatError,
    WatchConfig,
)

__all__ = [
    "load_config",
    "read_mapping",
    "BuildConfig",
    "ConfigError",
    "PathsConfig",
    "ToolConfig",
    "UnsupportedConfigFormatError",
    "WatchConfig",
]
