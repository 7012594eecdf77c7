from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest

from snipexec.errors import ProcessSpawnFailed, UnsupportedLanguage
from snipexec.executor import (
    CancellationToken,
    CommandDelegate,
    ExecutionEngine,
    FallbackAdapter,
    HttpDelegate,
    OutcomeStatus,
)
from snipexec.registry import LanguageRegistry
from snipexec.resolver import ExecutionRequest
from snipexec.workspace import WorkspaceManager


@pytest.fixture
def workspace(tmp_path):
    return WorkspaceManager(tmp_path / "work")


def _request(path: Path, first: int, last: int, filetype: str) -> ExecutionRequest:
    return ExecutionRequest(path, first, last, path.parent, filetype=filetype)


def test_command_delegate_runs_selected_block(workspace, write_source):
    registry = LanguageRegistry(fallback={"snake": "snake"})
    delegate = CommandDelegate(ExecutionEngine(), interpreters={"snake": ((sys.executable,), ".py")})
    adapter = FallbackAdapter(registry, delegate, workspace)
    path = write_source(
        "code.snake",
        """
        ignored = 1
        if True:
            print("fallback")
        """,
    )

    outcome = adapter.run(_request(path, 3, 3, "snake"), "snake")

    assert outcome.stdout == "fallback\n"
    assert (workspace.base_dir / "fallback" / "snake" / "snippet.py").exists()


def test_toolchain_override_applies_to_delegate(workspace, write_source):
    engine = ExecutionEngine(toolchain={"snake-interp": sys.executable})
    delegate = CommandDelegate(engine, interpreters={"snake": (("snake-interp",), ".py")})
    adapter = FallbackAdapter(LanguageRegistry(fallback={"snake": "snake"}), delegate, workspace)
    path = write_source("one.snake", "print(40 + 2)\n")
    assert adapter.run(_request(path, 1, 1, "snake"), "snake").stdout == "42\n"


def test_unknown_language_is_unsupported(workspace, write_source):
    adapter = FallbackAdapter(LanguageRegistry(), CommandDelegate(ExecutionEngine()), workspace)
    path = write_source("prog.cob", "DISPLAY 'HI'.\n")
    assert adapter.delegate_name("cobol") is None
    with pytest.raises(UnsupportedLanguage):
        adapter.run(_request(path, 1, 1, "cobol"), "cobol")
    assert workspace.is_empty()


def test_language_the_delegate_cannot_run(workspace):
    delegate = CommandDelegate(ExecutionEngine(), interpreters={})
    adapter = FallbackAdapter(LanguageRegistry(), delegate, workspace)
    assert adapter.delegate_name("perl") is None


def test_http_delegate_posts_block(workspace, write_source):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"stdout": "hi\n", "stderr": "", "exit_code": 0, "duration_ms": 5})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    delegate = HttpDelegate("http://runner.local/", client=client)
    adapter = FallbackAdapter(LanguageRegistry(), delegate, workspace)
    path = write_source("hello.pl", "print \"hi\\n\";\n")

    outcome = adapter.run(_request(path, 1, 1, "perl"), "perl")

    assert seen["url"] == "http://runner.local/exec"
    assert seen["body"] == {"language": "perl", "code": 'print "hi\\n";'}
    assert outcome.stdout == "hi\n"
    assert outcome.ok


def test_http_delegate_maps_non_zero_exit():
    def handler(request):
        return httpx.Response(200, json={"stdout": "", "stderr": "died", "exit_code": 255})

    delegate = HttpDelegate("http://runner.local", client=httpx.Client(transport=httpx.MockTransport(handler)))
    outcome = delegate.execute("perl", "die;", Path("."), "job", CancellationToken())
    assert outcome.status is OutcomeStatus.RUNTIME_FAILED
    assert outcome.stderr == "died"


def test_http_delegate_failure_is_spawn_failure():
    def handler(request):
        return httpx.Response(503, json={"detail": "down"})

    delegate = HttpDelegate("http://runner.local", client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(ProcessSpawnFailed):
        delegate.execute("perl", "1;", Path("."), "job", CancellationToken())


def test_http_delegate_language_filter():
    delegate = HttpDelegate("http://runner.local", languages=["perl"])
    assert delegate.supports("perl")
    assert not delegate.supports("php")


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"stdout": "", "exit_code": "many"}),
    ],
)
def test_http_delegate_malformed_response_is_spawn_failure(response):
    delegate = HttpDelegate(
        "http://runner.local", client=httpx.Client(transport=httpx.MockTransport(lambda request: response))
    )
    with pytest.raises(ProcessSpawnFailed, match="invalid response"):
        delegate.execute("perl", "1;", Path("."), "job", CancellationToken())
