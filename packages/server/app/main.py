"""
TaskHub participation core

Entry point for the FastAPI application hosting the participation services.
"""

from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.database import get_engine
from app.core.errors import BaseError
from app.core.events import RedisEventBus, get_event_bus, set_event_bus
from app.core.protocols import EventBus
from app.core.redis import close_redis, redis_is_reachable
from app.tasks.status_updates import register_status_consumer

settings = get_settings()
log = structlog.get_logger()


async def _database_is_reachable() -> bool:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        return False


def create_app(event_bus: Optional[EventBus] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TaskHub",
        description="Task participation, eligibility and completion tracking.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    @app.exception_handler(BaseError)
    async def base_error_handler(request: Request, exc: BaseError):
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.detail))

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        checks = {"database": await _database_is_reachable()}
        if isinstance(get_event_bus(), RedisEventBus):
            checks["redis"] = await redis_is_reachable()
        ready = all(checks.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"status": "ready" if ready else "unavailable", "checks": checks},
        )

    @app.on_event("startup")
    async def on_startup():
        if event_bus is not None:
            set_event_bus(event_bus)
        bus = register_status_consumer()
        await bus.start()
        log.info("TaskHub starting", bus=type(bus).__name__)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("TaskHub shutting down")
        await get_event_bus().close()
        await close_redis()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
