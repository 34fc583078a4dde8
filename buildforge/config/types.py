from dataclasses import dataclass, field, fields
from pathlib import Path

REQUIRED_TOOLS = (
    "bundler",
    "transpiler",
    "entry_generator",
    "minifier",
    "docs_validator",
    "doc_generator",
)
OPTIONAL_TOOLS = ("ascii_validator",)

DEFAULT_DEPRECATED = {
    "var": "deprecatedVar",
    "typeof": "deprecatedTypeof",
    "eval": "deprecatedEval",
    "import": "deprecatedImport",
}


@dataclass
class ToolConfig:
    name: str
    command: str | None = None
    callable: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class PathsConfig:
    manifest: str = "package.json"
    header: str = "src/header.js"
    version_file: str = "src/version.js"
    entry: str = "src/entry/bundleAny.js"
    src: str = "src"
    lib: str = "lib"
    compiled_header: str = "lib/header.js"
    compiled_main: str = "lib/entry/mainAny.js"
    symbols: str = "build/symbols.json"
    dist: str = "dist"
    # bundle, minified and source_map live inside dist
    bundle: str = "math.js"
    minified: str = "math.min.js"
    source_map: str = "math.min.map"
    docs_src: str = "lib"
    docs_dest: str = "docs/reference/functions"
    docs_root: str = "docs/reference"

    @classmethod
    def keys(cls) -> set[str]:
        return {f.name for f in fields(cls)}


@dataclass
class WatchConfig:
    paths: list[str] = field(default_factory=lambda: ["package.json", "src/**/*.js"])
    exclude: list[str] = field(default_factory=list)
    delay_ms: int = 100
    subset: list[str] = field(
        default_factory=lambda: ["bundle", "transpile", "patch-deprecated-symbols"]
    )


@dataclass
class BuildConfig:
    root: Path
    paths: PathsConfig
    tools: dict[str, ToolConfig]
    deprecated: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DEPRECATED))
    watch: WatchConfig = field(default_factory=WatchConfig)

    def resolve(self, path: str | Path) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    def get_tool(self, name: str) -> ToolConfig:
        if not self.has_tool(name):
            raise KeyError(name)

        return self.tools[name]


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
