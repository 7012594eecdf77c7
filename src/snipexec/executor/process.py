"""Child-process bookkeeping: cancellation tokens, process groups, capture.

Every child is started in its own session, so its pid is also the id of
a process group holding everything it forks.  Killing the group reaches
the compiler, the binary it produced and any helper they spawned.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set once to ask the job owning it to stop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


def kill_group(process: subprocess.Popen) -> None:
    """SIGKILL the process group led by ``process``."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


class ProcessTracker:
    """Registry of live children, grouped by the job that spawned them.

    Once :meth:`close` has run, any process registered afterwards is
    killed on arrival, so a spawn racing with shutdown cannot survive it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, List[subprocess.Popen]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, job_id: str, process: subprocess.Popen) -> None:
        with self._lock:
            self._jobs.setdefault(job_id, []).append(process)
            closed = self._closed
        if closed:
            logger.warning("Process group %s of job %s started after shutdown; killing", process.pid, job_id)
            kill_group(process)

    def remove(self, job_id: str, process: subprocess.Popen) -> None:
        with self._lock:
            procs = self._jobs.get(job_id, [])
            if process in procs:
                procs.remove(process)
            if not procs:
                self._jobs.pop(job_id, None)

    def pids(self) -> List[int]:
        with self._lock:
            return [p.pid for procs in self._jobs.values() for p in procs]

    def kill_job(self, job_id: str) -> int:
        with self._lock:
            procs = list(self._jobs.get(job_id, []))
        for process in procs:
            logger.info("Killing process group %s of job %s", process.pid, job_id)
            kill_group(process)
        return len(procs)

    def kill_all(self) -> int:
        with self._lock:
            procs = [p for group in self._jobs.values() for p in group]
        for process in procs:
            logger.info("Killing process group %s", process.pid)
            kill_group(process)
        return len(procs)

    def close(self) -> int:
        """Kill every tracked group and refuse new children from now on."""
        with self._lock:
            self._closed = True
        return self.kill_all()


class Capture(threading.Thread):
    """Drain one pipe, keeping at most ``limit`` bytes."""

    def __init__(self, stream, limit: int) -> None:
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.buffer = bytearray()
        self.truncated = False

    def run(self) -> None:
        fd = self.stream.fileno()
        try:
            while True:
                chunk = os.read(fd, 65536)
                if not chunk:
                    break
                room = self.limit - len(self.buffer)
                if room > 0:
                    self.buffer.extend(chunk[:room])
                if len(chunk) > room:
                    self.truncated = True
        except OSError as exc:
            logger.debug("Capture stopped: %s", exc)
        finally:
            self.stream.close()

    @property
    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")
