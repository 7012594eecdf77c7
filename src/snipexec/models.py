"""Pydantic models for notifications and published output.

Notifications carry no reply: the HTTP surface only acknowledges them
with a job id, and results surface later as :class:`OutputRecord`
entries in the output sink.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .registry import SupportLevel
from .resolver import ExecutionRequest

# Positional order of the params array of a ``run`` notification.
RUN_PARAM_ORDER = ("file", "first_line", "last_line", "script_dir", "filetype", "level")


class RunParams(BaseModel):
    """Arguments of a Run notification."""

    file: str = Field(..., description="Saved file to read; relative paths resolve against script_dir.")
    first_line: int = Field(..., ge=1, description="First selected line, 1-indexed.")
    last_line: int = Field(..., ge=1, description="Last selected line, inclusive.")
    script_dir: str = Field(default=".", description="Working/project directory of the client.")
    filetype: Optional[str] = Field(
        default=None,
        description="Editor filetype.  Detected from the file extension when omitted.",
    )
    level: Optional[str] = Field(
        default=None,
        description="Ask for a lower support level than the language declares.",
    )

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            SupportLevel.parse(value)
        return value

    def to_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            file_path=Path(self.file),
            first_line=self.first_line,
            last_line=self.last_line,
            script_dir=Path(self.script_dir),
            filetype=self.filetype,
            level=SupportLevel.parse(self.level) if self.level else None,
        )


class Notification(BaseModel):
    """Generic envelope: ``{"method": "run", "params": [...] | {...}}``."""

    method: str
    params: Union[List[Any], Dict[str, Any]] = Field(default_factory=dict)

    def run_params(self) -> RunParams:
        params = self.params
        if isinstance(params, list):
            params = dict(zip(RUN_PARAM_ORDER, params))
        return RunParams.model_validate(params)


class JobAccepted(BaseModel):
    """Acknowledgement of a notification.  Carries no result."""

    job_id: Optional[str] = None
    kind: str


class OutputRecord(BaseModel):
    """One published result: a run outcome, a clean, or an error."""

    seq: int
    job_id: str
    kind: str
    status: str
    language: Optional[str] = None
    level: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: int = 0
    truncated: bool = False
    error: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ServerStatus(BaseModel):
    busy: bool
    queued: int
    current_job: Optional[str] = None
    live_pids: List[int] = Field(default_factory=list)
    workdir: str
