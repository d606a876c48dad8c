"""
Social API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables if not present (TiDB)
  3. Connect to Redis
  4. Build the realtime gateway (presence, typing, delivery, notifications)
  5. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from social_api.clients.redis_client import close_redis, init_redis
from social_api.config import settings
from social_api.database import AsyncSessionLocal, engine, init_db
from social_api.exceptions import SocialAPIError
from social_api.realtime.gateway import RealtimeGateway, build_gateway
from social_api.routers import follows, messages, notifications, posts, realtime, users
from social_api.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


def attach_realtime(
    app: FastAPI,
    session_factory=AsyncSessionLocal,
    clock: Optional[Callable[[], datetime]] = None,
) -> RealtimeGateway:
    """Build this process's realtime state and hang it on app.state."""
    app.state.gateway = build_gateway(session_factory, clock=clock)
    return app.state.gateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Social API (env=%s)", settings.environment)

    await init_db()
    await init_redis()
    attach_realtime(app)

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await app.state.gateway.router.close()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Social API",
    description=(
        "Posts, follows, direct messages and notifications with realtime "
        "delivery over WebSocket and a read-through Redis cache."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(SocialAPIError)
async def social_api_error_handler(request: Request, exc: SocialAPIError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.context)
    elif exc.context:
        logger.info("%s %s rejected: %s %s", request.method, request.url.path, exc.message, exc.context)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(follows.router, prefix="/follows", tags=["Follows"])
app.include_router(messages.router, prefix="/messages", tags=["Messages"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(realtime.router, tags=["Realtime"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
