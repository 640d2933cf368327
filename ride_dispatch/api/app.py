"""
FastAPI application factory.

* Registers routes for rides, pullers, admin and the puller WebSocket.
* Wires the dispatch engine onto ``app.state.services`` -- either the
  services passed in (tests) or the production wiring built on startup.
* Starts / stops the expiration worker and hardware listener via
  lifespan events.
* Maps engine failures to HTTP: NotFound -> 404, InvalidState and
  MissingAssignment -> 409.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ride_dispatch.api.middleware import limiter
from ride_dispatch.api.routes import admin, pullers, rides, ws
from ride_dispatch.config import settings
from ride_dispatch.domain.errors import InvalidState, MissingAssignment, NotFound
from ride_dispatch.infrastructure import database
from ride_dispatch.infrastructure.redis_client import close_redis, get_redis
from ride_dispatch.wiring import DispatchServices, build_default_services
from ride_dispatch.workers.hardware_listener import HardwareListener

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build default services if none were injected; run background workers."""
    listener = None
    owns_services = getattr(app.state, "services", None) is None

    if owns_services:
        if settings.create_schema_on_startup:
            await database.create_schema(database.engine)
        redis = await get_redis()
        app.state.services = build_default_services(
            database.async_session_factory, redis
        )
        if settings.hardware_listener_enabled:
            listener = HardwareListener(
                redis, app.state.services, prefix=settings.topic_prefix
            )
            await listener.start()

    await app.state.services.scheduler.start()
    yield
    await app.state.services.scheduler.stop()

    if listener is not None:
        await listener.stop()
    if owns_services:
        await close_redis()
        await database.engine.dispose()


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app(services: Optional[DispatchServices] = None) -> FastAPI:
    app = FastAPI(
        title="Ride Dispatch & Lifecycle API",
        description=(
            "Matches block-originated ride requests to nearby pullers, "
            "distributes offers, resolves the accept race, expires stale "
            "requests and settles completion points atomically."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Engine failures
    app.add_exception_handler(NotFound, _error(404))
    app.add_exception_handler(InvalidState, _error(409))
    app.add_exception_handler(MissingAssignment, _error(409))

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(pullers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(ws.router)

    return app
