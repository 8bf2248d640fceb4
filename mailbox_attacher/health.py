"""FastAPI health endpoints for liveness and readiness probes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, PollerState

if TYPE_CHECKING:
    from .service import AttacherService


def create_health_app(service: AttacherService) -> FastAPI:
    """Build a minimal FastAPI app with ``/health`` and ``/ready`` routes.

    ``/health`` answers 503 once the poller has stopped for good; a
    poller paused by backpressure still counts as healthy.
    """
    app = FastAPI(title="mailbox-attacher health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        poller = service.poller
        gate = service.gate
        details: dict[str, object] = {
            "queue_depth": gate.queue.qsize() if gate is not None else 0,
            "queue_capacity": gate.queue.maxsize if gate is not None else 0,
            "paused": gate.paused if gate is not None else False,
            "pause_count": gate.pause_count if gate is not None else 0,
        }
        if poller is None:
            status = HealthStatus(
                state=PollerState.CREATED,
                uptime_seconds=service.uptime_seconds,
                providers=[],
                details=details,
            )
            return JSONResponse(content=status.model_dump(mode="json"), status_code=503)

        status = HealthStatus(
            state=poller.state,
            uptime_seconds=service.uptime_seconds,
            providers=poller.providers,
            failed_providers=[f.provider for f in poller.failed_registrations],
            last_poll_time=poller.last_poll_time,
            cycles_completed=poller.cycles_completed,
            attachments_saved=poller.attachments_saved,
            processed_messages=poller.processed_count,
            details=details,
        )
        healthy = poller.state != PollerState.STOPPED or bool(details["paused"])
        return JSONResponse(
            content=status.model_dump(mode="json"),
            status_code=200 if healthy else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.is_ready
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    return app
