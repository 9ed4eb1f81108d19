import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic_access.config import settings
from clinic_access.middleware.clinic import ClinicContextMiddleware
from clinic_access.middleware.exceptions import register_exception_handlers
from clinic_access.routers import admin, health, session
from clinic_access.services.sessions import SessionRegistry
from clinic_access.utils.cache import InvalidationBus, QueryCache, close_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the invalidation listener; close sessions and clients on shutdown."""
    cache: QueryCache = app.state.cache
    task = None
    if cache.bus is not None:
        task = asyncio.create_task(cache.bus.listen(cache))
        logger.info("Invalidation listener started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Invalidation listener exited with an error")
            logger.info("Invalidation listener stopped")
        app.state.sessions.close_all()
        await app.state.http.aclose()
        await close_redis()


def create_app(
    client: httpx.AsyncClient | None = None,
    cache: QueryCache | None = None,
) -> FastAPI:
    app = FastAPI(
        title="Clinic Access",
        description="Clinic role and permission resolution",
        version="0.1.0",
        lifespan=lifespan,
    )

    if client is None:
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout_seconds,
        )
    if cache is None:
        bus = InvalidationBus() if settings.invalidation_bus_enabled else None
        cache = QueryCache(bus=bus)

    app.state.http = client
    app.state.cache = cache
    app.state.sessions = SessionRegistry(client, cache)

    # ── Exception Handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── Middleware (last added runs first) ───────────────────
    # Session context (innermost - processes request data)
    app.add_middleware(ClinicContextMiddleware)

    # CORS (outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(session.router, prefix="/api/session", tags=["session"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])

    return app


app = create_app()
