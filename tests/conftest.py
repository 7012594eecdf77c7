"""Shared fixtures: an isolated configuration and a job server on ``tmp_path``."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

from snipexec.config import Config
from snipexec.server import JobServer


@pytest.fixture
def config(tmp_path) -> Config:
    home = tmp_path / "home"
    return Config(
        home=home,
        work_dir=home / "work",
        log_file=None,
        clean_settle_ms=10,
        toolchain={"python3": sys.executable},
    )


@pytest.fixture
def exits():
    """Records calls to the server's exit hook instead of killing pytest."""
    calls = []
    return calls


@pytest.fixture
def server(config, exits):
    srv = JobServer(config, exit_hook=lambda: exits.append(True))
    srv.start()
    yield srv
    srv.cancel_all()
    srv.stop(timeout=10)


@pytest.fixture
def write_source(tmp_path):
    """Write a dedented source file under ``tmp_path/src`` and return its path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / "src" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
        return path

    return _write
