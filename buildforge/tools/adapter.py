from __future__ import annotations

import importlib
import os
import signal
import subprocess
import threading
from typing import Callable

from buildforge.log import get_logger

from .types import InputSpec, ToolError, ToolResult

log = get_logger("buildforge.tools")

ToolFunction = Callable[[InputSpec], "ToolResult | None"]

_POSIX = os.name == "posix"
_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


class ExternalToolAdapter:
    """Single entry point to an external build tool.

    `isolated` is True when every invocation gets a fresh process.
    """

    name: str = "tool"
    isolated: bool = True

    def run(self, spec: InputSpec, cancel: threading.Event | None = None) -> ToolResult:
        raise NotImplementedError


class CommandToolAdapter(ExternalToolAdapter):
    isolated = True

    def __init__(
        self,
        name: str,
        command: str,
        *,
        env: dict[str, str] | None = None,
        poll_interval: float = 0.05,
    ):
        self.name = name
        self.command = command
        self.env = dict(env or {})
        self.poll_interval = poll_interval

    def run(self, spec: InputSpec, cancel: threading.Event | None = None) -> ToolResult:
        log.debug("%s: %s", self.name, self.command)
        proc = subprocess.Popen(
            self.command,
            shell=True,
            cwd=spec.cwd or None,
            env={**os.environ, **self.env, **spec_env(spec)},
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            # own process group, so cancelling reaches the children of the shell
            start_new_session=_POSIX,
        )
        stdout, stderr = self._wait(proc, cancel)
        errors, warnings = split_diagnostics(stderr)

        if proc.returncode != 0:
            if not errors:
                errors = [f"exit code {proc.returncode}"]
            raise ToolError(self.name, errors, warnings)

        for line in errors:
            log.info("%s: %s", self.name, line)

        artifacts = (spec.output,) if spec.output else ()
        return ToolResult(artifacts, tuple(warnings), stdout)

    def _wait(
        self, proc: subprocess.Popen, cancel: threading.Event | None
    ) -> tuple[str, str]:
        if cancel is None:
            return proc.communicate()

        while True:
            try:
                return proc.communicate(timeout=self.poll_interval)
            except subprocess.TimeoutExpired:
                if not cancel.is_set():
                    continue

            log.warning("%s: cancelled, terminating pid %s", self.name, proc.pid)
            _signal_group(proc, signal.SIGTERM)
            try:
                proc.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                _signal_group(proc, _SIGKILL)
                proc.communicate()
            raise ToolError(self.name, ["cancelled"])


class CallableToolAdapter(ExternalToolAdapter):
    isolated = False

    def __init__(self, name: str, fn: ToolFunction):
        self.name = name
        self.fn = fn

    def run(self, spec: InputSpec, cancel: threading.Event | None = None) -> ToolResult:
        result = self.fn(spec)
        if result is None:
            return ToolResult((spec.output,) if spec.output else ())
        return result


def import_callable(ref: str) -> ToolFunction:
    """Resolve a ``package.module:function`` reference."""
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:function', got '{ref}'")

    module = importlib.import_module(module_name)
    fn = getattr(module, attr)
    if not callable(fn):
        raise TypeError(f"{ref} is not callable")
    return fn


def spec_env(spec: InputSpec) -> dict[str, str]:
    env = {"BUILDFORGE_INPUTS": os.pathsep.join(spec.inputs)}
    if spec.output is not None:
        env["BUILDFORGE_OUTPUT"] = spec.output
    for key, value in spec.extra.items():
        env["BUILDFORGE_" + key.upper().replace("-", "_")] = value
    return env


def split_diagnostics(text: str) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.lower().startswith("warning"):
            warnings.append(line)
        else:
            errors.append(line)
    return errors, warnings


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    if not _POSIX:
        if sig == _SIGKILL:
            proc.kill()
        else:
            proc.terminate()
        return
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass
