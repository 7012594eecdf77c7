"""Client-side helper for editor integrations.

A backend is launched once per client session and addressed by a handle
the caller chooses.  Starting a handle that already has a live backend
is a no-op returning the same handle.  Backends are never restarted
behind the caller's back: a dead one raises :class:`BackendUnreachable`
and the caller decides to :meth:`BackendClient.restart`.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from .config import Config
from .errors import BackendUnreachable

logger = logging.getLogger(__name__)


def _free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


@dataclass
class BackendSession:
    handle: str
    process: Any
    http: httpx.Client

    @property
    def alive(self) -> bool:
        return self.process.poll() is None


class BackendClient:
    """Start, address and stop backends by session handle."""

    def __init__(
        self,
        config: Optional[Config] = None,
        startup_timeout: float = 10.0,
        popen: Callable[..., Any] = subprocess.Popen,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config or Config.from_env()
        self.startup_timeout = startup_timeout
        self._popen = popen
        self._transport = transport
        self._sessions: Dict[str, BackendSession] = {}

    def start(self, handle: str) -> str:
        session = self._sessions.get(handle)
        if session is not None and session.alive:
            logger.debug("Backend %s already running", handle)
            return handle
        if session is not None:
            session.http.close()

        host = self.config.host
        port = _free_port(host)
        env = dict(os.environ, SNIPEXEC_HOST=host, SNIPEXEC_PORT=str(port))
        process = self._popen(
            [sys.executable, "-m", "snipexec", "serve", "--host", host, "--port", str(port)],
            env=env,
            stdin=subprocess.DEVNULL,
        )
        headers = {"x-api-key": self.config.api_key} if self.config.api_key else {}
        http = httpx.Client(
            base_url=f"http://{host}:{port}",
            headers=headers,
            timeout=10.0,
            transport=self._transport,
        )
        session = BackendSession(handle, process, http)
        self._sessions[handle] = session
        try:
            self._wait_ready(session)
        except BackendUnreachable:
            self._sessions.pop(handle, None)
            if session.alive:
                process.kill()
            http.close()
            raise
        logger.info("Backend %s started on port %s (pid %s)", handle, port, process.pid)
        return handle

    def is_alive(self, handle: str) -> bool:
        session = self._sessions.get(handle)
        return session is not None and session.alive

    def run(
        self,
        handle: str,
        file: str,
        first_line: int,
        last_line: int,
        script_dir: str,
        filetype: Optional[str] = None,
    ) -> str:
        payload = {
            "file": file,
            "first_line": first_line,
            "last_line": last_line,
            "script_dir": script_dir,
            "filetype": filetype,
        }
        return self._post(handle, "/run", payload)["job_id"]

    def clean(self, handle: str) -> None:
        """Request a wipe and wait the settle delay, since there is no ack."""
        self._post(handle, "/clean")
        time.sleep(self.config.clean_settle_ms / 1000)

    def output(self, handle: str, after: int = 0) -> List[Dict[str, Any]]:
        session = self._session(handle)
        try:
            response = session.http.get("/output", params={"after": after})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise BackendUnreachable(f"Backend {handle} did not answer: {exc}")
        return response.json()

    def terminate(self, handle: str, timeout: float = 5.0) -> None:
        session = self._sessions.pop(handle, None)
        if session is None:
            return
        if session.alive:
            try:
                session.http.post("/terminate")
            except httpx.HTTPError as exc:
                # The backend may die before answering.
                logger.debug("Terminate request to %s: %s", handle, exc)
            try:
                session.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                session.process.kill()
                session.process.wait()
        session.http.close()

    def restart(self, handle: str) -> str:
        """Terminate and relaunch, the only way to cancel a runaway run."""
        self.terminate(handle)
        return self.start(handle)

    def close(self) -> None:
        for handle in list(self._sessions):
            self.terminate(handle)

    def _session(self, handle: str) -> BackendSession:
        session = self._sessions.get(handle)
        if session is None:
            raise BackendUnreachable(f"No backend started for {handle}")
        if not session.alive:
            raise BackendUnreachable(
                f"Backend {handle} exited with status {session.process.poll()}"
            )
        return session

    def _post(self, handle: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = self._session(handle)
        try:
            response = session.http.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise BackendUnreachable(f"Backend {handle} did not accept {path}: {exc}")
        return response.json()

    def _wait_ready(self, session: BackendSession) -> None:
        deadline = time.monotonic() + self.startup_timeout
        last_error: Optional[Exception] = None
        while time.monotonic() < deadline:
            if not session.alive:
                raise BackendUnreachable(
                    f"Backend {session.handle} exited during startup with status {session.process.poll()}"
                )
            try:
                if session.http.get("/health").status_code == 200:
                    return
            except httpx.HTTPError as exc:
                last_error = exc
            time.sleep(0.1)
        raise BackendUnreachable(f"Backend {session.handle} not ready: {last_error}")
