"""The long-lived job server.

Run and Clean notifications are queued and served by one worker thread,
strictly in receipt order.  The worker holds the workspace lock while a
run materializes and executes, so two runs never interleave their files
in the shared work directory.

Cancellation has two granularities:

* :meth:`JobServer.cancel` stops one job through its token, killing only
  the process groups that job spawned;
* :meth:`JobServer.terminate` is the hard stop: every tracked process
  group is killed, then the server process itself.  The client restarts
  the backend afterwards.
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .config import Config
from .errors import InvalidRequest, SnipExecError, UnsupportedLanguage
from .executor import (
    CancellationToken,
    CommandDelegate,
    ExecutionEngine,
    FallbackAdapter,
    HttpDelegate,
    RunOutcome,
)
from .models import Notification, ServerStatus
from .registry import LanguageRegistry, SupportLevel, default_registry
from .resolver import ContextResolver, ExecutionRequest
from .sink import OutputSink
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def _kill_self() -> None:
    logging.shutdown()
    os.kill(os.getpid(), signal.SIGKILL)


@dataclass
class Job:
    job_id: str
    kind: str
    request: Optional[ExecutionRequest] = None
    token: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class RunReport:
    language: str
    level: SupportLevel
    outcome: RunOutcome


class JobServer:
    """Serialize runs against one workspace and own its lifecycle."""

    def __init__(
        self,
        config: Config,
        registry: Optional[LanguageRegistry] = None,
        resolver: Optional[ContextResolver] = None,
        workspace: Optional[WorkspaceManager] = None,
        engine: Optional[ExecutionEngine] = None,
        fallback: Optional[FallbackAdapter] = None,
        sink: Optional[OutputSink] = None,
        exit_hook: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.registry = registry or default_registry
        self.resolver = resolver or ContextResolver(config)
        self.workspace = workspace or WorkspaceManager(config.work_dir)
        self.engine = engine or ExecutionEngine(
            timeout=config.max_execution_seconds,
            max_output_bytes=config.max_output_bytes,
            toolchain=config.toolchain,
        )
        self.tracker = self.engine.tracker
        if fallback is None:
            if config.fallback_url:
                delegate = HttpDelegate(config.fallback_url, timeout=config.fallback_timeout)
            else:
                delegate = CommandDelegate(self.engine)
            fallback = FallbackAdapter(self.registry, delegate, self.workspace, self.resolver)
        self.fallback = fallback
        self.sink = sink or OutputSink(config.output_file, config.output_history)
        self.exit_hook = exit_hook or _kill_self

        self._queue: "queue.Queue[Optional[Job]]" = queue.Queue()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: Dict[str, Job] = {}
        self._current: Optional[Job] = None
        self._worker: Optional[threading.Thread] = None

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> "JobServer":
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return self
            self.workspace.ensure()
            self._worker = threading.Thread(target=self._work, name="snipexec-worker", daemon=True)
            self._worker.start()
        logger.info("Job server started; work directory %s", self.workspace.base_dir)
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Finish queued jobs, then stop the worker."""
        worker = self._worker
        if worker is None:
            return
        self._queue.put(None)
        worker.join(timeout)
        self._worker = None

    def cancel_all(self, close: bool = False) -> int:
        """Cancel queued and running jobs; returns the groups killed.

        With ``close`` the tracker also kills any child spawned from now
        on, which is what a shutdown wants.
        """
        with self._lock:
            jobs: List[Job] = list(self._pending.values())
        for job in jobs:
            job.token.cancel()
        if close:
            return self.tracker.close()
        return self.tracker.kill_all()

    def terminate(self) -> None:
        """Kill every child process group, then this process."""
        killed = self.cancel_all(close=True)
        logger.warning("Terminate: killed %d process group(s); exiting", killed)
        self.exit_hook()

    # -- requests ----------------------------------------------------------

    def submit_run(self, request: ExecutionRequest) -> str:
        return self._submit(Job(uuid.uuid4().hex[:12], "run", request))

    def submit_clean(self) -> str:
        return self._submit(Job(uuid.uuid4().hex[:12], "clean"))

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            job = self._pending.get(job_id)
        if job is None:
            return False
        job.token.cancel()
        self.tracker.kill_job(job_id)
        logger.info("Job %s cancelled", job_id)
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted job has been published."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._pending, timeout)

    def status(self) -> ServerStatus:
        with self._lock:
            current = self._current.job_id if self._current else None
            queued = len(self._pending) - (1 if current else 0)
        return ServerStatus(
            busy=current is not None,
            queued=queued,
            current_job=current,
            live_pids=self.tracker.pids(),
            workdir=str(self.workspace.base_dir),
        )

    def _submit(self, job: Job) -> str:
        with self._lock:
            self._pending[job.job_id] = job
        self._queue.put(job)
        logger.info("Queued %s job %s", job.kind, job.job_id)
        return job.job_id

    # -- pipeline ----------------------------------------------------------

    def execute(
        self,
        request: ExecutionRequest,
        job_id: str = "adhoc",
        token: Optional[CancellationToken] = None,
    ) -> RunReport:
        """Resolve, materialize and run one request synchronously."""
        filetype = request.filetype or self.registry.detect(request.source_path)
        descriptor = self.registry.lookup(filetype)
        if descriptor is None:
            name = self.fallback.delegate_name(filetype)
            if name is None:
                raise UnsupportedLanguage(filetype)
            logger.info("[%s] %s has no handler; using fallback %s", job_id, filetype, name)
            outcome = self.fallback.run(request, filetype, job_id, token)
            return RunReport(name, SupportLevel.BLOC, outcome)

        level = descriptor.level
        if request.level is not None:
            level = min(request.level, descriptor.level)
        unit = self.resolver.resolve(request, descriptor, level)
        for miss in unit.misses:
            logger.debug("[%s] %s", job_id, miss)

        with self.workspace.lock:
            files = self.workspace.materialize(unit)
            outcome = self.engine.run(descriptor, files, job_id, token)
        return RunReport(descriptor.name, level, outcome)

    def clean(self) -> None:
        self.workspace.clean()
        # Let the deletion settle before a restart or run reuses the path.
        time.sleep(self.config.clean_settle_ms / 1000)

    def _work(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                break
            with self._lock:
                self._current = job
            try:
                self._process(job)
            finally:
                with self._idle:
                    self._current = None
                    self._pending.pop(job.job_id, None)
                    self._idle.notify_all()

    def _process(self, job: Job) -> None:
        try:
            if job.kind == "clean":
                self.clean()
                self.sink.publish(job_id=job.job_id, kind="clean", status="cleaned")
                return
            if job.request is None:
                raise InvalidRequest(f"Run job {job.job_id} carries no request")
            report = self.execute(job.request, job.job_id, job.token)
        except SnipExecError as exc:
            logger.warning("[%s] %s failed: %s", job.job_id, job.kind, exc)
            self.sink.publish(
                job_id=job.job_id,
                kind=job.kind,
                status="error",
                error=type(exc).__name__,
                message=str(exc),
            )
            return
        except Exception as exc:
            logger.exception("[%s] Unhandled error during %s", job.job_id, job.kind)
            self.sink.publish(
                job_id=job.job_id,
                kind=job.kind,
                status="error",
                error="InternalError",
                message=str(exc),
            )
            return

        outcome = report.outcome
        logger.info(
            "[%s] %s finished: status=%s exit_code=%s duration_ms=%s",
            job.job_id,
            report.language,
            outcome.status.value,
            outcome.exit_code,
            outcome.duration_ms,
        )
        self.sink.publish(
            job_id=job.job_id,
            kind="run",
            status=outcome.status.value,
            language=report.language,
            level=report.level.name,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
            truncated=outcome.truncated,
        )


def dispatch(server: JobServer, notification: Notification) -> Optional[str]:
    """Apply one notification; returns the queued job id, if any."""
    method = notification.method.lower()
    if method == "run":
        return server.submit_run(notification.run_params().to_request())
    if method == "clean":
        return server.submit_clean()
    if method == "terminate":
        server.terminate()
        return None
    logger.info("Unknown notification received: %s", notification.method)
    return None
