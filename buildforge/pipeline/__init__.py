from .build import (
    BUNDLE,
    GENERATE_DOCS,
    GENERATE_ENTRIES,
    MINIFY,
    PATCH_DEPRECATED,
    TRANSPILE,
    VALIDATE_DOCS,
    WRITE_BANNER,
    BuildPipeline,
    build_adapters,
    patch_deprecated,
    read_symbols,
)

__all__ = [
    "BUNDLE",
    "GENERATE_DOCS",
    "GENERATE_ENTRIES",
    "MINIFY",
    "PATCH_DEPRECATED",
    "TRANSPILE",
    "VALIDATE_DOCS",
    "WRITE_BANNER",
    "BuildPipeline",
    "build_adapters",
    "patch_deprecated",
    "read_symbols",
]
