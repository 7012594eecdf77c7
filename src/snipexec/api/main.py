"""
FastAPI application for the snippet runner backend.

Every endpoint that changes state is a notification: it is acknowledged
with ``202`` and a job id, never with the result.  Results are published
to the output sink and polled through ``GET /output``.  An API key is
enforced when ``SNIPEXEC_API_KEY`` is set.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import Config
from ..models import JobAccepted, Notification, OutputRecord, RunParams, ServerStatus
from ..server import JobServer, dispatch


logger = logging.getLogger("snipexec.api")


def create_app(server: JobServer, config: Optional[Config] = None) -> FastAPI:
    config = config or server.config
    app = FastAPI(title="Snippet Runner", version="0.1.0")
    app.state.server = server

    @app.middleware("http")
    async def authenticate(request, call_next):
        """Middleware to enforce API key authentication on all requests."""
        path = request.url.path
        method = request.method
        client = getattr(request.client, "host", "unknown")

        logger.debug("Incoming request: %s %s from %s", method, path, client)

        if config.api_key and request.headers.get("x-api-key") != config.api_key:
            logger.warning("Invalid API key for %s %s from %s", method, path, client)
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

        response = await call_next(request)
        logger.debug("Response: %s %s -> %s", method, path, response.status_code)
        return response

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Return a simple health check response."""
        return {"status": "ok"}

    @app.get("/status", response_model=ServerStatus)
    async def status() -> ServerStatus:
        return server.status()

    @app.post("/run", response_model=JobAccepted, status_code=202)
    def run(params: RunParams) -> JobAccepted:
        """Queue a run of ``params.first_line..params.last_line`` of a saved file."""
        job_id = server.submit_run(params.to_request())
        logger.info("[/run] %s:%s-%s queued as %s", params.file, params.first_line, params.last_line, job_id)
        return JobAccepted(job_id=job_id, kind="run")

    @app.post("/clean", response_model=JobAccepted, status_code=202)
    def clean() -> JobAccepted:
        """Queue a wipe of the work directory behind earlier runs."""
        return JobAccepted(job_id=server.submit_clean(), kind="clean")

    @app.post("/terminate", response_model=JobAccepted, status_code=202)
    def terminate(background: BackgroundTasks) -> JobAccepted:
        """Kill every child and this process once the response is sent."""
        logger.warning("[/terminate] hard stop requested")
        background.add_task(server.terminate)
        return JobAccepted(kind="terminate")

    @app.post("/jobs/{job_id}/cancel", response_model=JobAccepted, status_code=202)
    def cancel(job_id: str) -> JobAccepted:
        if not server.cancel(job_id):
            raise HTTPException(status_code=404, detail="Job not found or already finished")
        return JobAccepted(job_id=job_id, kind="cancel")

    @app.post("/notify", response_model=JobAccepted, status_code=202)
    def notify(notification: Notification, background: BackgroundTasks) -> JobAccepted:
        """Generic envelope accepting the same messages as the stdio transport."""
        method = notification.method.lower()
        if method == "terminate":
            background.add_task(server.terminate)
            return JobAccepted(kind="terminate")
        try:
            job_id = dispatch(server, notification)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
        return JobAccepted(job_id=job_id, kind=method)

    @app.get("/output", response_model=List[OutputRecord])
    async def output(after: int = Query(default=0, ge=0)) -> List[OutputRecord]:
        """Records published after sequence number ``after``."""
        return server.sink.since(after)

    @app.get("/output/latest", response_model=OutputRecord)
    async def latest() -> OutputRecord:
        record = server.sink.latest()
        if record is None:
            raise HTTPException(status_code=404, detail="No output yet")
        return record

    return app
