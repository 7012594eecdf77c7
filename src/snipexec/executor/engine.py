"""
Compile/run chains for materialized snippets.

A language's command templates are run one after the other in the work
directory.  The first step exiting non-zero ends the chain; its output is
still returned because a failing compile or program is ordinary output
for the user, not an engine error.

No sandbox is applied: children run with the invoking user's filesystem
and network access.  What the engine does guarantee is that every child
can be reclaimed, through the job's cancellation token, the optional
wall-clock limit, or :meth:`ProcessTracker.kill_all`.
"""

from __future__ import annotations

import enum
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ProcessSpawnFailed
from ..registry import LanguageDescriptor
from ..workspace import MaterializedUnit
from .process import Capture, CancellationToken, ProcessTracker, kill_group

logger = logging.getLogger(__name__)

# How long reader threads may lag behind the exit of the main process.
_DRAIN_GRACE_SECONDS = 1.0
_POLL_SECONDS = 0.05


class OutcomeStatus(str, enum.Enum):
    OK = "ok"
    COMPILE_FAILED = "compile_failed"
    RUNTIME_FAILED = "runtime_failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class RunOutcome:
    """Result of running a snippet.

    Attributes
    ----------
    stdout: str
        Standard output of every step, in order.
    stderr: str
        Standard error of every step; empty when the language merges it
        into ``stdout``.
    exit_code: int
        Exit status of the last step that ran.  Negative when killed.
    duration_ms: int
        Wall-clock time of the whole chain in milliseconds.
    status: OutcomeStatus
        Classification of the exit.
    step: int
        Index of the last step that ran.
    truncated: bool
        Whether output was cut at the capture limit.
    """

    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    status: OutcomeStatus = OutcomeStatus.OK
    step: int = 0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK


class ExecutionEngine:
    """Run command chains with captured output and reclaimable children."""

    def __init__(
        self,
        tracker: Optional[ProcessTracker] = None,
        timeout: int = 0,
        max_output_bytes: int = 1024 * 1024,
        toolchain: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Parameters
        ----------
        tracker: ProcessTracker, optional
            Shared registry of live children; the job server's Terminate
            uses the same instance.
        timeout: int, optional
            Wall-clock limit per step in seconds.  ``0`` disables it.
        max_output_bytes: int, optional
            Capture limit for stdout and for stderr.
        toolchain: dict, optional
            Replacement binaries keyed by the template's first token.
        """
        self.tracker = tracker or ProcessTracker()
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.toolchain = dict(toolchain or {})

    def expand(self, template: Sequence[str], unit: MaterializedUnit) -> List[str]:
        values = {
            "main": str(unit.main),
            "binary": str(unit.binary),
            "workdir": str(unit.workdir),
            "classpath": unit.classpath,
        }
        argv: List[str] = []
        for token in template:
            if token == "{sources}":
                argv.extend(str(p) for p in unit.sources)
            else:
                argv.append(token.format(**values))
        if argv and argv[0] in self.toolchain:
            argv[0] = self.toolchain[argv[0]]
        return argv

    def environment(self, descriptor: LanguageDescriptor, unit: MaterializedUnit) -> Optional[Dict[str, str]]:
        """Child environment with the unit's search paths prepended, if any."""
        if not descriptor.path_env or not unit.search_paths:
            return None
        env = dict(os.environ)
        paths = [str(p) for p in unit.search_paths]
        if env.get(descriptor.path_env):
            paths.append(env[descriptor.path_env])
        env[descriptor.path_env] = os.pathsep.join(paths)
        return env

    def run(
        self,
        descriptor: LanguageDescriptor,
        unit: MaterializedUnit,
        job_id: str = "adhoc",
        token: Optional[CancellationToken] = None,
    ) -> RunOutcome:
        steps = [self.expand(template, unit) for template in descriptor.commands]
        return self.run_chain(
            steps,
            unit.workdir,
            job_id=job_id,
            token=token,
            separate_stderr=descriptor.separate_stderr,
            env=self.environment(descriptor, unit),
        )

    def run_chain(
        self,
        steps: Sequence[Sequence[str]],
        cwd: Path,
        job_id: str = "adhoc",
        token: Optional[CancellationToken] = None,
        separate_stderr: bool = True,
        stdin_data: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> RunOutcome:
        token = token or CancellationToken()
        start_time = time.perf_counter()
        stdout: List[str] = []
        stderr: List[str] = []
        truncated = False
        exit_code = 0
        status = OutcomeStatus.OK
        index = 0

        for index, argv in enumerate(steps):
            if token.cancelled:
                status = OutcomeStatus.CANCELLED
                exit_code = -1
                break
            last = index == len(steps) - 1
            logger.info("[%s] step %d: %s", job_id, index, " ".join(argv))
            code, out, err, cut, timed_out = self._run_step(
                list(argv), cwd, job_id, token, separate_stderr, stdin_data if last else None, env
            )
            stdout.append(out)
            stderr.append(err)
            truncated = truncated or cut
            exit_code = code
            if timed_out:
                stderr.append(f"\nExecution timed out after {self.timeout} seconds.")
                status = OutcomeStatus.TIMED_OUT
                break
            if token.cancelled:
                status = OutcomeStatus.CANCELLED
                break
            if code != 0:
                status = OutcomeStatus.RUNTIME_FAILED if last else OutcomeStatus.COMPILE_FAILED
                break

        duration = int((time.perf_counter() - start_time) * 1000)
        return RunOutcome(
            stdout="".join(stdout),
            stderr="".join(stderr),
            exit_code=exit_code,
            duration_ms=duration,
            status=status,
            step=index,
            truncated=truncated,
        )

    def _run_step(
        self,
        argv: List[str],
        cwd: Path,
        job_id: str,
        token: CancellationToken,
        separate_stderr: bool,
        stdin_data: Optional[str],
        env: Optional[Dict[str, str]] = None,
    ):
        try:
            process = subprocess.Popen(
                argv,
                cwd=str(cwd),
                stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if separate_stderr else subprocess.STDOUT,
                start_new_session=True,
                env=env,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise ProcessSpawnFailed(argv[0], exc.strerror or str(exc))
        except OSError as exc:
            raise ProcessSpawnFailed(argv[0], str(exc))

        self.tracker.add(job_id, process)
        try:
            readers = [Capture(process.stdout, self.max_output_bytes)]
            if separate_stderr:
                readers.append(Capture(process.stderr, self.max_output_bytes))
            for reader in readers:
                reader.start()

            if stdin_data is not None:
                try:
                    process.stdin.write(stdin_data.encode("utf-8"))
                except BrokenPipeError:
                    pass
                finally:
                    try:
                        process.stdin.close()
                    except BrokenPipeError:
                        pass

            timed_out = False
            deadline = time.monotonic() + self.timeout if self.timeout else None
            killed = False
            while True:
                try:
                    process.wait(timeout=_POLL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    if killed:
                        continue
                    if token.cancelled:
                        logger.info("[%s] cancelled, killing %s", job_id, process.pid)
                        kill_group(process)
                        killed = True
                    elif deadline is not None and time.monotonic() > deadline:
                        logger.warning("[%s] timed out after %ss", job_id, self.timeout)
                        kill_group(process)
                        killed = timed_out = True

            # Descendants left behind by the step die with it, whether or
            # not they still hold the pipes open.
            kill_group(process)
            for reader in readers:
                reader.join(_DRAIN_GRACE_SECONDS)
        finally:
            self.tracker.remove(job_id, process)

        out = readers[0].text
        err = readers[1].text if separate_stderr else ""
        cut = any(reader.truncated for reader in readers)
        return process.returncode, out, err, cut, timed_out
