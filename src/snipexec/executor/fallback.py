"""
Best-effort execution for languages without a descriptor.

The selected block is handed to a delegate keyed by the delegate's own
language name.  Only Bloc-level semantics are offered: no imports or
definitions are gathered, and a compiled language needs the selection to
contain a complete entry point.

Two delegates are provided:

* ``CommandDelegate`` writes the block to the work directory and runs a
  locally installed interpreter through the execution engine, so
  Terminate and per-job cancellation still reach it.

* ``HttpDelegate`` posts the block to a remote code-execution service
  exposing ``POST /exec`` with ``{"language", "code"}`` and answering
  ``{"stdout", "stderr", "exit_code", "duration_ms"}``.
"""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import httpx

from ..errors import ProcessSpawnFailed, UnsupportedLanguage, WorkspaceIOFailed
from ..registry import LanguageDescriptor, LanguageRegistry, SupportLevel
from ..resolver import ContextResolver, ExecutionRequest
from ..workspace import WorkspaceManager
from .engine import ExecutionEngine, OutcomeStatus, RunOutcome
from .process import CancellationToken

logger = logging.getLogger(__name__)


class FallbackDelegate(abc.ABC):
    """An external runner that executes a block of code by language name."""

    @abc.abstractmethod
    def supports(self, language: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def execute(
        self,
        language: str,
        code: str,
        workdir: Path,
        job_id: str,
        token: CancellationToken,
    ) -> RunOutcome:
        raise NotImplementedError


class CommandDelegate(FallbackDelegate):
    """Run the block with a local interpreter."""

    INTERPRETERS: Dict[str, Tuple[Tuple[str, ...], str]] = {
        "perl": (("perl",), ".pl"),
        "php": (("php",), ".php"),
        "r": (("Rscript",), ".R"),
        "julia": (("julia",), ".jl"),
        "haskell": (("runghc",), ".hs"),
        "elixir": (("elixir",), ".exs"),
        "ocaml": (("ocaml",), ".ml"),
        "typescript": (("ts-node",), ".ts"),
        "kotlin": (("kotlinc", "-script"), ".kts"),
        "scala": (("scala",), ".sc"),
        "swift": (("swift",), ".swift"),
        "racket": (("racket",), ".rkt"),
        "scheme": (("guile",), ".scm"),
        "tcl": (("tclsh",), ".tcl"),
    }

    def __init__(
        self,
        engine: ExecutionEngine,
        interpreters: Optional[Dict[str, Tuple[Sequence[str], str]]] = None,
    ) -> None:
        self.engine = engine
        self.interpreters = dict(self.INTERPRETERS if interpreters is None else interpreters)

    def supports(self, language: str) -> bool:
        return language in self.interpreters

    def execute(self, language, code, workdir, job_id, token) -> RunOutcome:
        prefix, extension = self.interpreters[language]
        script = workdir / f"snippet{extension}"
        try:
            workdir.mkdir(parents=True, exist_ok=True)
            script.write_text(code + "\n", encoding="utf-8")
        except OSError as exc:
            raise WorkspaceIOFailed(f"Cannot write {script}: {exc}")
        argv = list(prefix) + [str(script)]
        if argv[0] in self.engine.toolchain:
            argv[0] = self.engine.toolchain[argv[0]]
        return self.engine.run_chain([argv], workdir, job_id=job_id, token=token)


class HttpDelegate(FallbackDelegate):
    """Forward the block to a remote code-execution service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        languages: Optional[Iterable[str]] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.languages = set(languages) if languages is not None else None
        self.client = client or httpx.Client(timeout=timeout)

    def supports(self, language: str) -> bool:
        return self.languages is None or language in self.languages

    def execute(self, language, code, workdir, job_id, token) -> RunOutcome:
        url = f"{self.base_url}/exec"
        logger.info("[%s] forwarding %s block to %s", job_id, language, url)
        try:
            response = self.client.post(url, json={"language": language, "code": code})
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            exit_code = int(data.get("exit_code", 0))
            duration_ms = int(data.get("duration_ms", 0))
        except httpx.HTTPError as exc:
            raise ProcessSpawnFailed(url, str(exc))
        except (ValueError, TypeError) as exc:
            raise ProcessSpawnFailed(url, f"invalid response: {exc}")
        return RunOutcome(
            stdout=str(data.get("stdout", "")),
            stderr=str(data.get("stderr", "")),
            exit_code=exit_code,
            duration_ms=duration_ms,
            status=OutcomeStatus.OK if exit_code == 0 else OutcomeStatus.RUNTIME_FAILED,
        )


class FallbackAdapter:
    """Route recognised-but-unregistered languages to a delegate."""

    def __init__(
        self,
        registry: LanguageRegistry,
        delegate: FallbackDelegate,
        workspace: WorkspaceManager,
        resolver: Optional[ContextResolver] = None,
    ) -> None:
        self.registry = registry
        self.delegate = delegate
        self.workspace = workspace
        self.resolver = resolver or ContextResolver()

    def delegate_name(self, filetype: str) -> Optional[str]:
        name = self.registry.fallback_name(filetype)
        if name is None or not self.delegate.supports(name):
            return None
        return name

    def run(
        self,
        request: ExecutionRequest,
        filetype: str,
        job_id: str = "adhoc",
        token: Optional[CancellationToken] = None,
    ) -> RunOutcome:
        name = self.delegate_name(filetype)
        if name is None:
            raise UnsupportedLanguage(filetype)
        generic = LanguageDescriptor(
            name=name,
            level=SupportLevel.BLOC,
            extension=request.source_path.suffix,
            commands=(),
        )
        unit = self.resolver.resolve(request, generic, SupportLevel.BLOC)
        with self.workspace.lock:
            workdir = self.workspace.ensure() / "fallback" / name
            return self.delegate.execute(name, unit.code, workdir, job_id, token or CancellationToken())
