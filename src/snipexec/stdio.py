"""JSON-lines notification loop over stdin/stdout.

An editor that launches the backend as a child process writes one
notification per line::

    {"method": "run", "params": ["/src/app.py", 3, 5, "/src"]}
    {"method": "clean"}
    {"method": "terminate"}

Every published output record is written back as one JSON line on
stdout.  Logging goes to stderr so the two never mix.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from typing import IO, Optional

from pydantic import ValidationError

from .models import Notification, OutputRecord
from .server import JobServer, dispatch

logger = logging.getLogger(__name__)


def serve_stdio(server: JobServer, stdin: Optional[IO[str]] = None, stdout: Optional[IO[str]] = None) -> None:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    write_lock = threading.Lock()

    def _emit(record: OutputRecord) -> None:
        with write_lock:
            stdout.write(record.model_dump_json() + "\n")
            stdout.flush()

    server.sink.subscribe(_emit)
    logger.info("Listening for notifications on stdin")

    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            notification = Notification.model_validate(json.loads(line))
            dispatch(server, notification)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring malformed notification %r: %s", line[:200], exc)

    # The client went away: reclaim children before shutting down.
    logger.info("stdin closed; stopping")
    server.cancel_all(close=True)
    server.stop()
