from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Callable

from buildforge.artifacts import (
    Artifact,
    ArtifactWriter,
    VersionedBannerProvider,
    utc_today,
)
from buildforge.config import BuildConfig, ConfigError
from buildforge.executor import RunReport, Scheduler
from buildforge.graph import TaskGraph
from buildforge.log import get_logger
from buildforge.tools import (
    CallableToolAdapter,
    CommandToolAdapter,
    ExternalToolAdapter,
    InputSpec,
    ToolError,
    ToolResult,
    import_callable,
)
from buildforge.watch import WatchController

log = get_logger("buildforge.pipeline")

BUNDLE = "bundle"
TRANSPILE = "transpile"
WRITE_BANNER = "write-banner"
GENERATE_ENTRIES = "generate-entries"
PATCH_DEPRECATED = "patch-deprecated-symbols"
MINIFY = "minify"
VALIDATE_DOCS = "validate-docs"
GENERATE_DOCS = "generate-docs"

DEPRECATED_MARKER = "// deprecated aliases (generated by buildforge)"


def build_adapters(config: BuildConfig) -> dict[str, ExternalToolAdapter]:
    adapters: dict[str, ExternalToolAdapter] = {}
    for name, tool in config.tools.items():
        if tool.command is not None:
            adapters[name] = CommandToolAdapter(name, tool.command, env=tool.env)
            continue
        try:
            fn = import_callable(tool.callable or "")
        except (ImportError, AttributeError, TypeError, ValueError) as exc:
            raise ConfigError(
                f"{name}: cannot load callable '{tool.callable}': {exc}"
            ) from exc
        adapters[name] = CallableToolAdapter(name, fn)
    return adapters


def render_deprecated_block(aliases: dict[str, str]) -> str:
    lines = [DEPRECATED_MARKER]
    for name, target in aliases.items():
        lines.append(f"exports['{name}'] = exports.{target};")
    return "\n".join(lines) + "\n"


def patch_deprecated(code: str, aliases: dict[str, str]) -> str:
    """Append the alias block, replacing one left by a previous patch."""
    idx = code.find(DEPRECATED_MARKER)
    if idx >= 0:
        code = code[:idx].rstrip("\n")
    return code + "\n\n" + render_deprecated_block(aliases)


def read_symbols(path: Path) -> list[str]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"{path}: cannot read symbol manifest: {exc}") from exc

    if not isinstance(raw, list) or not all(isinstance(s, str) for s in raw):
        raise ValueError(f"{path}: symbol manifest must be a list of names")

    return raw


class BuildPipeline:
    """Default task graph for turning library sources into artifacts."""

    def __init__(
        self,
        config: BuildConfig,
        *,
        adapters: dict[str, ExternalToolAdapter] | None = None,
        today: Callable[[], str] = utc_today,
    ):
        self.config = config
        self.paths = config.paths
        self.writer = ArtifactWriter(config.root)
        self.banner = VersionedBannerProvider(
            config.resolve(self.paths.header),
            config.resolve(self.paths.manifest),
            today=today,
        )
        self.adapters = adapters if adapters is not None else build_adapters(config)
        self.cancel = threading.Event()
        self.graph = self._register()

    def _register(self) -> TaskGraph:
        p = self.paths
        out = self._out
        graph = TaskGraph()

        graph.add_task(
            BUNDLE,
            [],
            self.bundle,
            outputs=[out(p.version_file), out(self._dist(p.bundle))],
        )
        graph.add_task(TRANSPILE, [], self.transpile, outputs=[out(p.lib)])
        # write-banner and patch-deprecated-symbols rewrite files inside the
        # transpile output in place, so they claim no outputs of their own
        graph.add_task(WRITE_BANNER, [TRANSPILE], self.write_banner)
        graph.add_task(
            GENERATE_ENTRIES,
            [TRANSPILE],
            self.generate_entries,
            outputs=[out(p.symbols)],
        )
        graph.add_task(
            PATCH_DEPRECATED, [GENERATE_ENTRIES], self.patch_deprecated_symbols
        )
        graph.add_task(
            MINIFY,
            [BUNDLE],
            self.minify,
            outputs=[out(self._dist(p.minified)), out(self._dist(p.source_map))],
        )
        graph.add_task(VALIDATE_DOCS, [TRANSPILE], self.validate_docs)
        graph.add_task(
            GENERATE_DOCS,
            [PATCH_DEPRECATED, VALIDATE_DOCS],
            self.generate_docs,
            outputs=[out(p.docs_dest)],
        )
        return graph

    def _out(self, path: str | Path) -> str:
        return str(self.config.resolve(path))

    def _dist(self, name: str) -> Path:
        return Path(self.paths.dist) / name

    def _tool(self, name: str) -> ExternalToolAdapter:
        if name not in self.adapters:
            raise ConfigError(f"Tool not configured: {name}")
        return self.adapters[name]

    def _run_tool(self, name: str, spec: InputSpec) -> ToolResult:
        return self._tool(name).run(spec, cancel=self.cancel)

    def run(
        self,
        targets: list[str] | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> RunReport:
        graph = self.graph
        if targets:
            graph = self.graph.subset(self.graph.closure(targets))
        return (scheduler or Scheduler()).run(graph, cancel=self.cancel)

    def watch_controller(
        self,
        scheduler: Scheduler,
        *,
        on_report: Callable[[RunReport], None] | None = None,
        poll_interval: float = 0.1,
    ) -> WatchController:
        watch = self.config.watch
        # writing the version marker must never trigger a rebuild
        exclude = [*watch.exclude, self.paths.version_file]
        return WatchController(
            scheduler,
            self.graph,
            watch.subset,
            root=self.config.root,
            paths=watch.paths,
            exclude=exclude,
            quiet_window=watch.delay_ms / 1000,
            poll_interval=poll_interval,
            on_report=on_report,
            cancel=self.cancel,
        )

    # -------------------------
    # Task actions
    # -------------------------

    def bundle(self) -> ToolResult:
        version = Artifact(
            "version", self.paths.version_file, self.banner.version_marker
        )
        log.info("updated %s", self.writer.write_artifact(version))

        bundle_path = self.config.resolve(self._dist(self.paths.bundle))
        result = self._run_tool(
            "bundler",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.entry)),),
                output=str(bundle_path),
                cwd=str(self.config.root),
                extra={"banner": self.banner.banner()},
            ),
        )
        log.info("bundled %s", bundle_path)
        return result

    def transpile(self) -> ToolResult:
        lib = self.config.resolve(self.paths.lib)
        result = self._run_tool(
            "transpiler",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.src)),),
                output=str(lib),
                cwd=str(self.config.root),
            ),
        )
        log.info("compiled %s", lib)
        return result

    def write_banner(self) -> None:
        header = Artifact("banner", self.paths.compiled_header, self.banner.banner)
        log.info("wrote banner to %s", self.writer.write_artifact(header))

    def generate_entries(self) -> ToolResult:
        symbols = self.config.resolve(self.paths.symbols)
        symbols.parent.mkdir(parents=True, exist_ok=True)
        result = self._run_tool(
            "entry_generator",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.src)),),
                output=str(symbols),
                cwd=str(self.config.root),
                extra={"lib": str(self.config.resolve(self.paths.lib))},
            ),
        )
        names = read_symbols(symbols)
        log.info("generated entries, %d symbols in %s", len(names), symbols)
        return result

    def patch_deprecated_symbols(self) -> None:
        main = self.paths.compiled_main
        code = self.writer.read(main)
        target = self.writer.write(main, patch_deprecated(code, self.config.deprecated))
        log.info("Added deprecated functions to %s", target)

    def minify(self) -> ToolResult:
        dist = self.config.resolve(self.paths.dist)
        result = self._run_tool(
            "minifier",
            InputSpec(
                inputs=(self.paths.bundle,),
                output=self.paths.minified,
                cwd=str(dist),
                extra={"source_map": self.paths.source_map},
            ),
        )

        missing = [
            name
            for name in (self.paths.minified, self.paths.source_map)
            if not (dist / name).is_file()
        ]
        if missing:
            raise ToolError("minifier", [f"missing output {dist / m}" for m in missing])

        log.info("Minified %s", dist / self.paths.minified)
        log.info("Mapped %s", dist / self.paths.source_map)
        return result

    def validate_docs(self) -> ToolResult:
        result = self._run_tool(
            "docs_validator",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.lib)),),
                cwd=str(self.config.root),
            ),
        )
        for line in result.stdout.splitlines():
            log.info("docs_validator: %s", line)
        return result

    def generate_docs(self) -> ToolResult:
        symbols_path = self.config.resolve(self.paths.symbols)
        names = read_symbols(symbols_path)
        dest = self.config.resolve(self.paths.docs_dest)
        result = self._run_tool(
            "doc_generator",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.docs_src)),),
                output=str(dest),
                cwd=str(self.config.root),
                extra={
                    "docs_root": str(self.config.resolve(self.paths.docs_root)),
                    "symbols": ",".join(names),
                    "symbols_file": str(symbols_path),
                },
            ),
        )
        log.info("generated docs for %d symbols in %s", len(names), dest)
        return result

    def validate_ascii(self) -> ToolResult:
        if not self.config.has_tool("ascii_validator"):
            raise ConfigError("Tool not configured: ascii_validator")

        return self._run_tool(
            "ascii_validator",
            InputSpec(
                inputs=(str(self.config.resolve(self.paths.src)),),
                cwd=str(self.config.root),
            ),
        )
