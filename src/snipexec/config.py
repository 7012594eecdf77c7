"""Configuration loader.

The backend reads its configuration from environment variables so the
same installation works under any editor client.  Reasonable defaults are
provided so that local use works out of the box.

Environment variables:

``SNIPEXEC_HOME``
    State directory holding the work directory, the log file and the last
    published output.  Defaults to ``$XDG_CACHE_HOME/snipexec`` (or
    ``~/.cache/snipexec``).

``SNIPEXEC_WORK_DIR``
    The disposable work directory.  Defaults to ``<home>/work``.

``SNIPEXEC_LOG_LEVEL`` / ``SNIPEXEC_LOG_FILE``
    Logging threshold (default ``INFO``) and log file (default
    ``<home>/snipexec.log``).

``SNIPEXEC_API_KEY``
    Shared secret expected in the ``x-api-key`` header.  Empty disables
    the check.

``SNIPEXEC_HOST`` / ``SNIPEXEC_PORT``
    Address of the HTTP notification surface.  Default ``127.0.0.1:8765``.

``SNIPEXEC_MAX_EXECUTION_SECONDS``
    Wall-clock limit per child process.  ``0`` (the default) means no
    limit; runaway programs are reclaimed with a Terminate notification.

``SNIPEXEC_MAX_OUTPUT_BYTES``
    Cap on captured stdout and stderr, each.  Default 1 MiB.

``SNIPEXEC_CLEAN_SETTLE_MS``
    Delay after wiping the work directory before Clean returns.  Default 300.

``SNIPEXEC_ROOT_SEARCH_DEPTH`` / ``SNIPEXEC_PROJECT_MAX_DEPTH`` / ``SNIPEXEC_PROJECT_MAX_FILES``
    Bounds on project-root detection and project file scanning.

``SNIPEXEC_LIBRARY_PATHS``
    Extra directories searched for library artifacts, ``os.pathsep``
    separated.

``SNIPEXEC_TOOLCHAIN``
    Comma-separated ``name=path`` pairs replacing toolchain binaries, for
    example ``python3=/opt/python/bin/python3,gcc=clang``.

``SNIPEXEC_FALLBACK_URL`` / ``SNIPEXEC_FALLBACK_TIMEOUT``
    Base URL of a remote code-execution service used for languages without
    a handler, and its request timeout in seconds (default 30).

``SNIPEXEC_OUTPUT_HISTORY``
    Number of output records kept in memory.  Default 50.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


def _default_home() -> Path:
    cache = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(cache) / "snipexec"


def _parse_pairs(value: str | None) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    if not value:
        return pairs
    for item in value.split(","):
        if not item.strip():
            continue
        name, sep, path = item.partition("=")
        if not sep or not name.strip() or not path.strip():
            raise ValueError(f"Invalid SNIPEXEC_TOOLCHAIN entry: {item!r}")
        pairs[name.strip()] = path.strip()
    return pairs


@dataclass
class Config:
    """Centralised configuration object."""

    home: Path
    work_dir: Path
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    api_key: str = ""
    host: str = "127.0.0.1"
    port: int = 8765
    max_execution_seconds: int = 0
    max_output_bytes: int = 1024 * 1024
    clean_settle_ms: int = 300
    root_search_depth: int = 10
    project_max_depth: int = 6
    project_max_files: int = 200
    library_paths: List[Path] = field(default_factory=list)
    toolchain: Dict[str, str] = field(default_factory=dict)
    fallback_url: Optional[str] = None
    fallback_timeout: int = 30
    output_history: int = 50

    @property
    def output_file(self) -> Path:
        return self.home / "last_output.json"

    @classmethod
    def load(cls) -> "Config":
        home = Path(os.getenv("SNIPEXEC_HOME") or _default_home())
        work_dir = Path(os.getenv("SNIPEXEC_WORK_DIR") or home / "work")
        log_file = Path(os.getenv("SNIPEXEC_LOG_FILE") or home / "snipexec.log")

        log_level = os.getenv("SNIPEXEC_LOG_LEVEL", "INFO").upper()

        def _int_var(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None or val == "":
                return default
            try:
                parsed = int(val)
            except ValueError:
                raise ValueError(f"Invalid integer for {name}: {val}")
            if parsed < 0:
                raise ValueError(f"{name} must not be negative: {val}")
            return parsed

        library_env = os.getenv("SNIPEXEC_LIBRARY_PATHS", "")
        library_paths = [Path(p) for p in library_env.split(os.pathsep) if p.strip()]

        return cls(
            home=home,
            work_dir=work_dir,
            log_level=log_level,
            log_file=log_file,
            api_key=os.getenv("SNIPEXEC_API_KEY", ""),
            host=os.getenv("SNIPEXEC_HOST", "127.0.0.1"),
            port=_int_var("SNIPEXEC_PORT", 8765),
            max_execution_seconds=_int_var("SNIPEXEC_MAX_EXECUTION_SECONDS", 0),
            max_output_bytes=_int_var("SNIPEXEC_MAX_OUTPUT_BYTES", 1024 * 1024),
            clean_settle_ms=_int_var("SNIPEXEC_CLEAN_SETTLE_MS", 300),
            root_search_depth=_int_var("SNIPEXEC_ROOT_SEARCH_DEPTH", 10),
            project_max_depth=_int_var("SNIPEXEC_PROJECT_MAX_DEPTH", 6),
            project_max_files=_int_var("SNIPEXEC_PROJECT_MAX_FILES", 200),
            library_paths=library_paths,
            toolchain=_parse_pairs(os.getenv("SNIPEXEC_TOOLCHAIN")),
            fallback_url=os.getenv("SNIPEXEC_FALLBACK_URL") or None,
            fallback_timeout=_int_var("SNIPEXEC_FALLBACK_TIMEOUT", 30),
            output_history=_int_var("SNIPEXEC_OUTPUT_HISTORY", 50),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the CLI to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        """
        return cls.load()
