"""Tests for command chains, output capture and process reclamation."""

from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path

import pytest

from snipexec.errors import ProcessSpawnFailed
from snipexec.executor import CancellationToken, ExecutionEngine, OutcomeStatus
from snipexec.registry import default_registry
from snipexec.workspace import MaterializedUnit

PY = sys.executable


def _py(code: str):
    return [PY, "-c", code]


def _gone(pid: int) -> bool:
    """True once ``pid`` has exited (a zombie counts as exited)."""
    stat = Path(f"/proc/{pid}/stat")
    try:
        fields = stat.read_text().rsplit(")", 1)[1].split()
    except (FileNotFoundError, ProcessLookupError):
        return True
    return fields[0] in ("Z", "X")


def test_single_step_output(tmp_path):
    outcome = ExecutionEngine().run_chain([_py("print(1+1)")], tmp_path)
    assert outcome.ok
    assert outcome.stdout == "2\n"
    assert outcome.exit_code == 0


def test_failing_compile_step_stops_chain(tmp_path):
    steps = [_py("import sys; print('compiling'); sys.exit(3)"), _py("print('never')")]
    outcome = ExecutionEngine().run_chain(steps, tmp_path)
    assert outcome.status is OutcomeStatus.COMPILE_FAILED
    assert outcome.exit_code == 3
    assert outcome.step == 0
    assert "never" not in outcome.stdout


def test_failing_last_step_is_runtime_failure(tmp_path):
    steps = [_py("print('built')"), _py("import sys; print('boom', file=sys.stderr); sys.exit(1)")]
    outcome = ExecutionEngine().run_chain(steps, tmp_path)
    assert outcome.status is OutcomeStatus.RUNTIME_FAILED
    assert outcome.stdout == "built\n"
    assert outcome.stderr == "boom\n"
    assert outcome.step == 1


def test_stderr_merged_when_not_separate(tmp_path):
    code = "import sys; print('err', file=sys.stderr)"
    outcome = ExecutionEngine().run_chain([_py(code)], tmp_path, separate_stderr=False)
    assert outcome.stdout == "err\n"
    assert outcome.stderr == ""


def test_output_is_truncated_at_limit(tmp_path):
    engine = ExecutionEngine(max_output_bytes=10)
    outcome = engine.run_chain([_py("print('x' * 1000)")], tmp_path)
    assert outcome.stdout == "x" * 10
    assert outcome.truncated
    assert outcome.ok


def test_stdin_is_fed_to_last_step(tmp_path):
    code = "import sys; print(sys.stdin.read().upper())"
    outcome = ExecutionEngine().run_chain([_py(code)], tmp_path, stdin_data="abc")
    assert outcome.stdout == "ABC\n"


def test_missing_binary(tmp_path):
    with pytest.raises(ProcessSpawnFailed) as err:
        ExecutionEngine().run_chain([["/nonexistent/toolchain/bin"]], tmp_path)
    assert "/nonexistent/toolchain/bin" in str(err.value)


def test_timeout_kills_step(tmp_path):
    engine = ExecutionEngine(timeout=1)
    outcome = engine.run_chain([_py("import time; time.sleep(30)")], tmp_path)
    assert outcome.status is OutcomeStatus.TIMED_OUT
    assert "timed out after 1 seconds" in outcome.stderr
    assert outcome.duration_ms < 20000
    assert engine.tracker.pids() == []


def test_cancelled_token_skips_remaining_steps(tmp_path):
    token = CancellationToken()
    token.cancel()
    outcome = ExecutionEngine().run_chain([_py("print(1)")], tmp_path, token=token)
    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.stdout == ""


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses /proc")
def test_cancel_kills_whole_process_group(tmp_path):
    pid_file = tmp_path / "grandchild.pid"
    code = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "time.sleep(60)\n"
    )
    engine = ExecutionEngine()
    token = CancellationToken()
    result = {}

    def _run():
        result["outcome"] = engine.run_chain([_py(code)], tmp_path, job_id="job-1", token=token)

    worker = threading.Thread(target=_run)
    worker.start()
    deadline = time.monotonic() + 20
    while not (pid_file.exists() and pid_file.read_text()) and time.monotonic() < deadline:
        time.sleep(0.05)
    grandchild = int(pid_file.read_text())
    assert engine.tracker.pids()

    token.cancel()
    worker.join(20)

    assert result["outcome"].status is OutcomeStatus.CANCELLED
    assert engine.tracker.pids() == []
    deadline = time.monotonic() + 5
    while not _gone(grandchild) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert _gone(grandchild)


def test_expand_placeholders_and_toolchain(tmp_path):
    engine = ExecutionEngine(toolchain={"javac": "/opt/jdk/bin/javac"})
    unit = MaterializedUnit(
        workdir=tmp_path,
        main=tmp_path / "Main.java",
        sources=[tmp_path / "Main.java", tmp_path / "src" / "Helper.java"],
        libraries=[Path("/libs/a.jar")],
    )
    java = default_registry.lookup("java")
    compile_step = engine.expand(java.commands[0], unit)
    assert compile_step[0] == "/opt/jdk/bin/javac"
    assert compile_step[-2:] == [str(tmp_path / "Main.java"), str(tmp_path / "src" / "Helper.java")]
    assert compile_step[compile_step.index("-cp") + 1].endswith("/libs/a.jar")


def test_run_uses_descriptor_commands(tmp_path):
    main = tmp_path / "main.py"
    main.write_text("print('from descriptor')\n")
    engine = ExecutionEngine(toolchain={"python3": PY})
    unit = MaterializedUnit(workdir=tmp_path, main=main, sources=[main])
    outcome = engine.run(default_registry.lookup("python"), unit)
    assert outcome.stdout == "from descriptor\n"


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="uses /proc")
def test_step_exit_reclaims_detached_descendants(tmp_path):
    pid_file = tmp_path / "daemon.pid"
    code = (
        "import subprocess, sys\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(120)'],"
        " stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
    )
    outcome = ExecutionEngine().run_chain([_py(code)], tmp_path)
    assert outcome.ok
    daemon = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while not _gone(daemon) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert _gone(daemon)


def test_closed_tracker_kills_late_children(tmp_path):
    engine = ExecutionEngine()
    assert engine.tracker.close() == 0
    assert engine.tracker.closed

    started = time.monotonic()
    outcome = engine.run_chain([_py("import time; time.sleep(30)")], tmp_path)

    assert outcome.exit_code < 0
    assert time.monotonic() - started < 20
    assert engine.tracker.pids() == []


def test_search_paths_are_exported_to_the_interpreter(tmp_path, monkeypatch):
    monkeypatch.setenv("PYTHONPATH", "/already/set")
    main = tmp_path / "main.py"
    main.write_text("import os\nprint(os.environ['PYTHONPATH'])\n")
    engine = ExecutionEngine(toolchain={"python3": PY})
    unit = MaterializedUnit(
        workdir=tmp_path, main=main, sources=[main], search_paths=[tmp_path / "src", tmp_path / "proj"]
    )
    outcome = engine.run(default_registry.lookup("python"), unit)
    expected = os.pathsep.join([str(tmp_path / "src"), str(tmp_path / "proj"), "/already/set"])
    assert outcome.stdout == expected + "\n"


def test_no_environment_override_without_search_paths(tmp_path):
    unit = MaterializedUnit(workdir=tmp_path, main=tmp_path / "main.py")
    assert ExecutionEngine().environment(default_registry.lookup("python"), unit) is None
    assert ExecutionEngine().environment(default_registry.lookup("c"), unit) is None
