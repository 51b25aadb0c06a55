from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .endpoints import alerts, health, predictive, telemetry
from .endpoints.realtime import websocket_rooms
from .errors import NotFound, PrimaryWriteFailure, ValidationError
from .factory import Services, build_services

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Crea la app. Sin ``services`` se construyen los de producción en el arranque."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            app.state.services = build_services()
        await app.state.services.bus.start()
        logger.info("[API] Telemetry service started")
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            logger.info("[API] Telemetry service stopped")

    app = FastAPI(title="Battery Telemetry Service", version="1.0.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return _error(400, str(exc), field=exc.field, index=exc.index)

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        return _error(404, str(exc))

    @app.exception_handler(PrimaryWriteFailure)
    async def _primary_failure(request: Request, exc: PrimaryWriteFailure):
        logger.error("[API] Primary write failed path=%s: %s", request.url.path, exc.reason)
        return _error(503, "Primary store unavailable")

    app.include_router(health.router)
    app.include_router(telemetry.router)
    app.include_router(alerts.router)
    app.include_router(predictive.router)
    app.add_api_websocket_route("/ws", websocket_rooms)
    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
