from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

from buildforge.cli.commands import run_cli
from buildforge.executor import RunReport
from buildforge.pipeline import BuildPipeline
from buildforge.watch import PollingSubscription, WatchController, WatchState


def _py(code: str) -> str:
    exe = str(Path(sys.executable))
    # This returns a shell command string. JSON will escape it safely.
    return f'"{exe}" -c "{code}"'


def _ok_tools() -> dict[str, str]:
    return {
        "bundler": _py(
            "import os, pathlib; "
            "p = pathlib.Path(os.environ['BUILDFORGE_OUTPUT']); "
            "p.parent.mkdir(parents=True, exist_ok=True); "
            "p.write_text(os.environ['BUILDFORGE_BANNER'])"
        ),
        "transpiler": _py(
            "import os, pathlib; "
            "p = pathlib.Path(os.environ['BUILDFORGE_OUTPUT'], 'entry', 'mainAny.js'); "
            "p.parent.mkdir(parents=True, exist_ok=True); "
            "p.write_text('exports.add = add;')"
        ),
        "entry_generator": _py(
            "import os, json; "
            "open(os.environ['BUILDFORGE_OUTPUT'], 'w').write(json.dumps(['add']))"
        ),
        "minifier": _py(
            "import os; "
            "open(os.environ['BUILDFORGE_OUTPUT'], 'w').write('x'); "
            "open(os.environ['BUILDFORGE_SOURCE_MAP'], 'w').write('{}')"
        ),
        "docs_validator": _py("print('docs ok')"),
        "doc_generator": _py(
            "import os; os.makedirs(os.environ['BUILDFORGE_OUTPUT'], exist_ok=True)"
        ),
    }


def _write_project(root: Path, **tool_overrides: str) -> Path:
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text('{"version": "3.1.4"}', encoding="utf-8")
    (root / "src" / "header.js").write_text(
        "/* mathlib @@version, @@date */\n", encoding="utf-8"
    )

    tools = _ok_tools()
    tools.update(tool_overrides)
    cfg = root / "buildforge.json"
    cfg.write_text(json.dumps({"tools": tools}), encoding="utf-8")
    return cfg


def test_list_prints_tasks_in_topo_order(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "list"])
    out = capsys.readouterr().out.splitlines()

    assert code == 0
    assert out[:2] == ["bundle", "transpile"]
    assert out[-1] == "generate-docs"
    assert len(out) == 8
    assert out.index("generate-entries") < out.index("patch-deprecated-symbols")


def test_plan_prints_stages(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "plan"])
    out = capsys.readouterr().out.splitlines()

    assert code == 0
    assert out == [
        "stage 1: bundle transpile",
        "stage 2: generate-entries minify validate-docs write-banner",
        "stage 3: patch-deprecated-symbols",
        "stage 4: generate-docs",
    ]


def test_run_once_builds_everything(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "run-once"])
    out = capsys.readouterr().out

    assert code == 0
    assert "OK bundle" in out
    assert "OK generate-docs" in out
    assert out.splitlines()[-1] == "8 ok, 0 warned, 0 failed, 0 skipped"

    version = (tmp_path / "src" / "version.js").read_text(encoding="utf-8")
    assert "export const version = '3.1.4'" in version
    assert (tmp_path / "dist" / "math.js").read_text().startswith("/* mathlib 3.1.4, ")
    main = (tmp_path / "lib" / "entry" / "mainAny.js").read_text(encoding="utf-8")
    assert "exports['eval'] = exports.deprecatedEval;" in main


def test_run_once_failure_returns_1_and_skips_dependents(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path, transpiler=_py("raise SystemExit(5)"))

    code = run_cli(["--config", str(cfg), "run-once"])
    out = capsys.readouterr().out

    assert code == 1
    assert "FAIL transpile" in out
    assert "    exit code 5" in out
    assert "SKIP write-banner (upstream failed: transpile)" in out
    assert "SKIP generate-docs (upstream failed: " in out
    assert "OK minify" in out


def test_run_once_target_runs_only_its_closure(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "run-once", "minify", "--workers", "1"])
    out = capsys.readouterr().out

    assert code == 0
    assert out.splitlines()[-1] == "2 ok, 0 warned, 0 failed, 0 skipped"
    assert not (tmp_path / "lib").exists()


def test_tool_warnings_are_reported(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(
        tmp_path,
        docs_validator=_py(
            "import sys; print('warning: missing example for add', file=sys.stderr)"
        ),
    )

    code = run_cli(["--config", str(cfg), "run-once", "validate-docs"])
    out = capsys.readouterr().out

    assert code == 0
    assert "WARN validate-docs" in out
    assert "    warning: missing example for add" in out


def test_invalid_config_path_returns_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "missing.json"

    code = run_cli(["--config", str(missing), "list"])
    captured = capsys.readouterr()

    assert code == 2
    assert captured.err != ""


def test_incomplete_config_returns_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = tmp_path / "buildforge.json"
    cfg.write_text(json.dumps({"tools": {"bundler": "true"}}), encoding="utf-8")

    code = run_cli(["--config", str(cfg), "plan"])

    assert code == 2
    assert "Missing tool" in capsys.readouterr().err


def test_unknown_target_returns_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "run-once", "nope"])
    captured = capsys.readouterr()

    assert code == 2
    assert captured.err != ""


def test_validate_ascii_without_tool_returns_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path)

    code = run_cli(["--config", str(cfg), "validate-ascii"])

    assert code == 2
    assert "ascii_validator" in capsys.readouterr().err


def test_validate_ascii_passes(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(tmp_path, ascii_validator=_py("print('12 files are ascii')"))

    code = run_cli(["--config", str(cfg), "validate-ascii"])

    assert code == 0
    assert "12 files are ascii" in capsys.readouterr().out


def test_validate_ascii_reports_offending_files(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _write_project(
        tmp_path,
        ascii_validator=_py(
            "import sys; "
            "print('src/a.js:3: non-ascii character', file=sys.stderr); "
            "raise SystemExit(1)"
        ),
    )

    code = run_cli(["--config", str(cfg), "validate-ascii"])

    assert code == 1
    assert "src/a.js:3: non-ascii character" in capsys.readouterr().err


# -------------------------
# watch
# -------------------------


class WatchRecorder:
    """Captures the controller `watch` builds and the reports it prints."""

    def __init__(self, monkeypatch: pytest.MonkeyPatch, stop_after: int | None = None):
        self.controller: WatchController | None = None
        self.reports: list[RunReport] = []
        self.first_report = threading.Event()
        self.stop_after = stop_after
        original = BuildPipeline.watch_controller

        def watch_controller(pipeline, scheduler, *, on_report=None, poll_interval=0.1):
            def report(r: RunReport) -> None:
                self.reports.append(r)
                if on_report is not None:
                    on_report(r)
                self.first_report.set()
                if self.stop_after is not None and len(self.reports) >= self.stop_after:
                    self.controller.stop()

            self.controller = original(
                pipeline, scheduler, on_report=report, poll_interval=poll_interval
            )
            return self.controller

        monkeypatch.setattr(BuildPipeline, "watch_controller", watch_controller)

    def wait_watching(self, timeout: float = 10.0) -> WatchController:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            c = self.controller
            if c is not None and c.state is WatchState.WATCHING:
                return c
            time.sleep(0.01)
        raise AssertionError("watch never started")


def test_watch_runs_the_subset_on_start(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _write_project(tmp_path)
    recorder = WatchRecorder(monkeypatch, stop_after=1)

    code = run_cli(["--config", str(cfg), "watch"])
    out = capsys.readouterr().out

    assert code == 0
    assert len(recorder.reports) == 1
    assert "OK bundle" in out
    assert "OK patch-deprecated-symbols" in out
    assert "minify" not in out
    assert out.splitlines()[-1] == "3 ok, 0 warned, 0 failed, 0 skipped"


def test_watch_rebuilds_once_per_source_change(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    # the bundler touches the version file as well; that write must not retrigger
    cfg = _write_project(
        tmp_path,
        bundler=_py(
            "import os; "
            "open(os.environ['BUILDFORGE_OUTPUT'], 'w').write('bundle'); "
            "open('src/version.js', 'a').write('// bundled')"
        ),
    )
    source = tmp_path / "src" / "functions" / "add.js"
    source.parent.mkdir(parents=True)
    source.write_text("export const add = (a, b) => a + b\n", encoding="utf-8")
    (tmp_path / "dist").mkdir()
    recorder = WatchRecorder(monkeypatch)

    def edit_then_stop() -> None:
        controller = recorder.wait_watching()
        # let the subscription take its first snapshot
        time.sleep(0.3)
        source.write_text("export const add = (a, b) => b + a\n\n", encoding="utf-8")
        recorder.first_report.wait(10)
        # room for a spurious rebuild to show up
        time.sleep(0.5)
        controller.stop()

    editor = threading.Thread(target=edit_then_stop, daemon=True)
    editor.start()
    code = run_cli(
        ["--config", str(cfg), "watch", "--no-initial-run", "--poll-interval", "0.02"]
    )
    editor.join(5)
    out = capsys.readouterr().out

    assert code == 0
    assert len(recorder.reports) == 1
    assert recorder.reports[0].ok
    assert out.count("3 ok, 0 warned, 0 failed, 0 skipped") == 1
    assert "// bundled" in (tmp_path / "src" / "version.js").read_text(encoding="utf-8")


def test_watch_subscription_failure_returns_1(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _write_project(tmp_path)
    original = PollingSubscription.snapshot
    calls: list[int] = []

    def failing(self):
        calls.append(1)
        if len(calls) > 1:
            raise OSError("watch root removed")
        return original(self)

    monkeypatch.setattr(PollingSubscription, "snapshot", failing)

    code = run_cli(
        ["--config", str(cfg), "watch", "--no-initial-run", "--poll-interval", "0.02"]
    )

    assert code == 1
    assert "watch stopped: watch root removed" in capsys.readouterr().err


# -------------------------
# signals
# -------------------------

REPO_ROOT = Path(__file__).resolve().parents[1]

# background shells start children with SIGINT ignored; restore the default
_MAIN = (
    "import signal; "
    "signal.signal(signal.SIGINT, signal.default_int_handler); "
    "from buildforge.cli import main; main()"
)


def _wait_for_pid(pid_file: Path, proc: subprocess.Popen, timeout: float = 20.0) -> int:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            raise AssertionError(f"buildforge exited early: {proc.communicate()}")
        try:
            text = pid_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            text = ""
        if text:
            return int(text)
        time.sleep(0.05)
    raise AssertionError("tool never started")


def _process_gone(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        try:
            # a killed child of a killed shell may linger as a zombie
            state = Path(f"/proc/{pid}/stat").read_text().rsplit(") ", 1)[1]
            if state.startswith("Z"):
                return True
        except OSError:
            pass
        time.sleep(0.05)
    return False


@pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")
@pytest.mark.parametrize(
    "sig", [signal.SIGINT, signal.SIGTERM], ids=["SIGINT", "SIGTERM"]
)
@pytest.mark.parametrize("command", ["watch", "run-once"])
def test_signal_stops_running_tool(tmp_path: Path, sig: int, command: str) -> None:
    pid_file = tmp_path / "tool.pid"
    cfg = _write_project(
        tmp_path,
        bundler=_py(
            "import os, time; "
            f"open(r'{pid_file}', 'w').write(str(os.getpid())); "
            "time.sleep(30)"
        ),
    )
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(REPO_ROOT), env.get("PYTHONPATH")) if p
    )

    proc = subprocess.Popen(
        [sys.executable, "-c", _MAIN, "--config", str(cfg), command],
        cwd=tmp_path,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    tool_pid = None
    try:
        tool_pid = _wait_for_pid(pid_file, proc)
        started = time.monotonic()
        proc.send_signal(sig)
        _, err = proc.communicate(timeout=15)

        assert proc.returncode == 130, err
        assert time.monotonic() - started < 10
        assert _process_gone(tool_pid)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()
        if tool_pid is not None:
            try:
                os.kill(tool_pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
