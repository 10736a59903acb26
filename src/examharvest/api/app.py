"""
HTTP delivery layer.

POST /api/scrape runs an interactive harvest behind the admission queue and
streams its progress as server-sent events. GET /health reports liveness
and admission load.
"""

from __future__ import annotations

import asyncio
import hmac
import time
from contextlib import asynccontextmanager, suppress
from functools import partial
from typing import Any, AsyncIterator, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from examharvest import __version__
from examharvest.core.config.models import AppConfig, Step
from examharvest.core.errors import SubmissionValidationError
from examharvest.core.logging import get_contextual_logger, get_logger
from examharvest.core.orchestrator.admission import AdmissionQueue
from examharvest.core.orchestrator.cancellation import CancellationToken
from examharvest.core.orchestrator.runner import HarvestRunner
from examharvest.core.orchestrator.sinks import LiveStreamSink
from examharvest.core.site.base import SiteAdapter
from examharvest.core.site.playwright_adapter import PlaywrightSiteAdapter

logger = get_logger("api")


class ScrapeRequest(BaseModel):
    """Credentials for one interactive harvest."""

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


# =============================================================================
# Error handlers
# =============================================================================


def _sanitize_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Drop "input" so submitted passwords never echo back
    return [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": str(err.get("msg", "")),
            "type": str(err.get("type", "")),
        }
        for err in errors
    ]


async def submission_error_handler(request: Request, exc: SubmissionValidationError) -> JSONResponse:
    logger.warning("Rejected submission on %s: %s", request.url.path, exc.details)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": exc.message, "details": exc.details},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = SubmissionValidationError(
        "Invalid request body",
        details=_sanitize_errors(list(exc.errors())),
    )
    return await submission_error_handler(request, error)


# =============================================================================
# Application factory
# =============================================================================


def create_app(
    config: AppConfig,
    *,
    adapter_factory: Callable[[], SiteAdapter] | None = None,
    run_worker: bool = False,
) -> FastAPI:
    """Build the HTTP application.

    Args:
        config: Application configuration
        adapter_factory: Builds a fresh site adapter per attempt
        run_worker: Also host the background job worker in this process
    """
    adapter_factory = adapter_factory or partial(PlaywrightSiteAdapter.from_config, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        worker_task: asyncio.Task[None] | None = None
        service = None
        if run_worker:
            from examharvest.core.scheduler import DurableJobSource, WorkerLoop, WorkerService

            worker = WorkerLoop(config, DurableJobSource(), adapter_factory)
            service = WorkerService(config, worker)
            worker_task = asyncio.create_task(service.start(), name="worker-service")
            logger.info("Background worker started alongside the API")

        try:
            yield
        finally:
            if service is not None and worker_task is not None:
                await service.stop()
                worker_task.cancel()
                with suppress(asyncio.CancelledError):
                    await worker_task
            logger.info("API shut down")

    app = FastAPI(title="ExamHarvest", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.started_at = time.monotonic()
    app.state.admission = AdmissionQueue(max_concurrency=config.admission.max_concurrency)

    app.add_exception_handler(SubmissionValidationError, submission_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        expected = config.api.api_key
        if not expected:
            return
        if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized: Invalid API Key",
            )

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        admission: AdmissionQueue = request.app.state.admission
        return {
            "status": "ok",
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "active": admission.active_count,
            "queued": admission.queued_count,
        }

    @app.post("/api/scrape", dependencies=[Depends(require_api_key)])
    async def scrape(body: ScrapeRequest, request: Request) -> EventSourceResponse:
        admission: AdmissionQueue = request.app.state.admission
        sink = LiveStreamSink(heartbeat_seconds=config.admission.heartbeat_seconds)
        token = CancellationToken()

        async def harvest() -> None:
            log = get_contextual_logger("api", ticket=ticket.id)
            runner = HarvestRunner(config, adapter_factory, token=token, log=log)
            try:
                outcome = await runner.run(body.email, body.password, sink)
            except Exception as e:
                log.exception("Live harvest crashed")
                await sink.send_error(str(e) or "Unknown error")
                return

            if outcome.succeeded:
                await sink.send_done()
            else:
                await sink.send_error(outcome.message)

        ticket = admission.submit(harvest, is_abandoned=lambda: sink.is_disconnected)
        if ticket.queued:
            await sink.emit_status(
                Step.QUEUED,
                f"🚦 Você está na fila (Posição {ticket.position})... Aguardando liberar recursos.",
            )

        async def event_stream() -> AsyncIterator[ServerSentEvent]:
            try:
                async for event in sink.stream():
                    yield event
            finally:
                if not ticket.done:
                    logger.info("Client left request %d, stopping its harvest", ticket.id)
                    sink.disconnect()
                    token.cancel("client disconnected")

        return EventSourceResponse(
            event_stream(),
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    return app
