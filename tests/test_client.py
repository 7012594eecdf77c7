from __future__ import annotations

import json
import subprocess

import httpx
import pytest

from snipexec.client import BackendClient
from snipexec.config import Config
from snipexec.errors import BackendUnreachable


class FakeProcess:
    """Stands in for a backend child process."""

    def __init__(self, argv, returncode=None):
        self.argv = argv
        self.returncode = returncode
        self.pid = 4242
        self.killed = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = 0
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


class FakeBackend:
    def __init__(self, exit_on_start=None):
        self.processes = []
        self.requests = []
        self.exit_on_start = exit_on_start

    def popen(self, argv, **kwargs):
        process = FakeProcess(argv, returncode=self.exit_on_start)
        self.processes.append(process)
        return process

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.url.path == "/run":
            body = json.loads(request.content)
            assert body["first_line"] == 2
            return httpx.Response(202, json={"job_id": "abc123", "kind": "run"})
        if request.url.path == "/output":
            return httpx.Response(200, json=[{"seq": 1, "stdout": "2\n"}])
        if request.url.path in ("/clean", "/terminate"):
            return httpx.Response(202, json={"job_id": None, "kind": request.url.path[1:]})
        return httpx.Response(404)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(tmp_path, backend):
    config = Config(home=tmp_path, work_dir=tmp_path / "work", clean_settle_ms=0)
    return BackendClient(
        config,
        startup_timeout=2,
        popen=backend.popen,
        transport=httpx.MockTransport(backend.handler),
    )


def test_start_is_idempotent(client, backend):
    assert client.start("buf-1") == "buf-1"
    assert client.start("buf-1") == "buf-1"
    assert len(backend.processes) == 1
    argv = backend.processes[0].argv
    assert argv[1:4] == ["-m", "snipexec", "serve"]
    assert client.is_alive("buf-1")


def test_run_and_output(client):
    client.start("buf")
    assert client.run("buf", "/src/a.py", 2, 3, "/src") == "abc123"
    assert client.output("buf") == [{"seq": 1, "stdout": "2\n"}]


def test_clean(client, backend):
    client.start("buf")
    client.clean("buf")
    assert ("POST", "/clean") in backend.requests


def test_dead_backend_is_reported_not_restarted(client, backend):
    client.start("buf")
    backend.processes[0].returncode = 1
    assert not client.is_alive("buf")
    with pytest.raises(BackendUnreachable):
        client.run("buf", "/src/a.py", 2, 2, "/src")
    assert len(backend.processes) == 1


def test_restart_launches_a_new_backend(client, backend):
    client.start("buf")
    client.restart("buf")
    assert len(backend.processes) == 2
    assert ("POST", "/terminate") in backend.requests
    assert client.is_alive("buf")


def test_backend_exiting_during_startup(tmp_path):
    backend = FakeBackend(exit_on_start=3)
    client = BackendClient(
        Config(home=tmp_path, work_dir=tmp_path / "work"),
        startup_timeout=2,
        popen=backend.popen,
        transport=httpx.MockTransport(backend.handler),
    )
    with pytest.raises(BackendUnreachable):
        client.start("buf")
    assert not client.is_alive("buf")


def test_unknown_handle(client):
    with pytest.raises(BackendUnreachable):
        client.output("never-started")


def test_terminate_kills_a_backend_that_ignores_it(client, backend):
    client.start("buf")
    process = backend.processes[0]

    def stubborn_wait(timeout=None):
        if not process.killed:
            raise subprocess.TimeoutExpired("snipexec", timeout)
        return process.returncode

    process.wait = stubborn_wait
    client.terminate("buf", timeout=0.1)
    assert process.killed
    assert not client.is_alive("buf")


def test_close_terminates_every_session(client, backend):
    client.start("a")
    client.start("b")
    client.close()
    assert not client.is_alive("a")
    assert not client.is_alive("b")
