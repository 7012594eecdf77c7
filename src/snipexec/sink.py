"""Where results surface.

The protocol has no reply channel, so every finished job is published
here: the latest record is written to ``last_output.json`` for clients
that poll a file, a bounded history is kept for ``GET /output``, and
subscribers (the stdio transport) are called with each record.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, List, Optional

from .models import OutputRecord

logger = logging.getLogger(__name__)

Listener = Callable[[OutputRecord], None]


class OutputSink:
    def __init__(self, path: Optional[Path] = None, history: int = 50) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._seq = 0
        self._records: Deque[OutputRecord] = deque(maxlen=max(history, 1))
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def publish(self, **fields: Any) -> OutputRecord:
        with self._lock:
            self._seq += 1
            record = OutputRecord(seq=self._seq, **fields)
            self._records.append(record)
            self._write(record)
        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("Output listener failed for record %s", record.seq)
        return record

    def latest(self) -> Optional[OutputRecord]:
        with self._lock:
            return self._records[-1] if self._records else None

    def since(self, after: int = 0) -> List[OutputRecord]:
        with self._lock:
            return [r for r in self._records if r.seq > after]

    def _write(self, record: OutputRecord) -> None:
        if self.path is None:
            return
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("Unable to write output file %s: %s", self.path, exc)
