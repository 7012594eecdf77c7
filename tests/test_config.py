from __future__ import annotations

import os
from pathlib import Path

import pytest

from snipexec.config import Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in (
        "SNIPEXEC_WORK_DIR",
        "SNIPEXEC_LOG_FILE",
        "SNIPEXEC_LOG_LEVEL",
        "SNIPEXEC_API_KEY",
        "SNIPEXEC_PORT",
        "SNIPEXEC_TOOLCHAIN",
        "SNIPEXEC_FALLBACK_URL",
        "SNIPEXEC_MAX_EXECUTION_SECONDS",
        "SNIPEXEC_LIBRARY_PATHS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SNIPEXEC_HOME", str(tmp_path / "state"))


def test_defaults(tmp_path):
    config = Config.from_env()
    assert config.home == tmp_path / "state"
    assert config.work_dir == tmp_path / "state" / "work"
    assert config.log_file == tmp_path / "state" / "snipexec.log"
    assert config.output_file == tmp_path / "state" / "last_output.json"
    assert config.max_execution_seconds == 0
    assert config.clean_settle_ms == 300
    assert config.port == 8765
    assert config.fallback_url is None


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("SNIPEXEC_PORT", "9000")
    monkeypatch.setenv("SNIPEXEC_LOG_LEVEL", "debug")
    monkeypatch.setenv("SNIPEXEC_TOOLCHAIN", "python3=/opt/py/bin/python, gcc=clang")
    monkeypatch.setenv("SNIPEXEC_LIBRARY_PATHS", f"/a/libs{os.pathsep}/b/libs")
    config = Config.from_env()
    assert config.port == 9000
    assert config.log_level == "DEBUG"
    assert config.toolchain == {"python3": "/opt/py/bin/python", "gcc": "clang"}
    assert config.library_paths == [Path("/a/libs"), Path("/b/libs")]


@pytest.mark.parametrize("value", ["abc", "-1"])
def test_rejects_bad_integers(monkeypatch, value):
    monkeypatch.setenv("SNIPEXEC_MAX_EXECUTION_SECONDS", value)
    with pytest.raises(ValueError, match="SNIPEXEC_MAX_EXECUTION_SECONDS"):
        Config.from_env()


def test_rejects_bad_toolchain_entry(monkeypatch):
    monkeypatch.setenv("SNIPEXEC_TOOLCHAIN", "gcc")
    with pytest.raises(ValueError, match="SNIPEXEC_TOOLCHAIN"):
        Config.from_env()
