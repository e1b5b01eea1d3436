"""
main.py
Wellness marketplace API: bookings, chat orders, event seats and the
notification inbox.

    uvicorn main:app --reload

Every error leaves as {"detail", "code"}. Logs are one JSON object per
line. Prometheus metrics are served on /metrics.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from config import redis_client as redis_config
from config.database import AsyncSessionLocal, close_db, init_db
from config.redis_client import close_redis, init_redis
from config.settings import settings
from services.booking.router import router as booking_router
from services.event.router import router as event_router
from services.notification.router import router as notification_router
from services.order.router import router as order_router
from shared.schemas.schemas import ErrorResponse
from shared.utils.errors import DomainError

UNMETERED_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}


# ── Logging ───────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "local"),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    # SQL echo goes through this logger when DEBUG is on
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await init_redis()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started (database and redis connected)")
    try:
        yield
    finally:
        await close_redis()
        await close_db()
        logger.info(f"{settings.APP_NAME} stopped")


# ── Middleware ────────────────────────────────────────────────

def _register_middleware(app: FastAPI) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )

    @app.middleware("http")
    async def anonymous_rate_limit(request: Request, call_next):
        """Per-IP budget for requests without a bearer token. A Redis outage lets traffic through."""
        client = redis_config.redis_client
        anonymous = not request.headers.get("Authorization", "").startswith("Bearer ")
        if client is None or not anonymous or request.url.path in UNMETERED_PATHS:
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        key = f"rate:unauth:{ip}"
        try:
            hits = await client.incr(key)
            if hits == 1:
                await client.expire(key, 60)
        except Exception as e:
            logger.error(f"Rate limit check failed for {ip}: {e}")
            return await call_next(request)

        if hits > settings.RATE_LIMIT_UNAUTH_PER_MINUTE:
            logger.warning(f"Rate limit exceeded for {ip} ({hits} requests this minute)")
            return JSONResponse(
                status_code=429,
                content=ErrorResponse(detail="Too many requests, slow down", code="rate_limited").model_dump(),
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    @app.middleware("http")
    async def trace_headers(request: Request, call_next):
        """X-Request-ID (echoed or generated) and X-Process-Time on every response."""
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        response.headers["X-Process-Time"] = f"{(time.perf_counter() - started) * 1000:.2f}ms"
        return response


# ── Errors ────────────────────────────────────────────────────

def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        logger.info(f"[{getattr(request.state, 'request_id', '-')}] {request.method} {request.url.path}: {exc.code} ({exc.message})")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(detail=exc.message, code=exc.code).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG else "Internal server error",
                "code": "internal_error",
                "request_id": request_id,
            },
        )


# ── Routes ────────────────────────────────────────────────────

def _register_routes(app: FastAPI) -> None:
    @app.get("/health", include_in_schema=False)
    async def health():
        checks = {"status": "ok", "version": settings.APP_VERSION, "database": "ok", "redis": "ok"}
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
        except Exception:
            checks["database"] = checks["status"] = "degraded"
        try:
            if redis_config.redis_client is None:
                raise ConnectionError("not connected")
            await redis_config.redis_client.ping()
        except Exception:
            checks["redis"] = checks["status"] = "degraded"
        return JSONResponse(checks, status_code=200 if checks["status"] == "ok" else 503)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"name": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"}

    for router in (booking_router, order_router, event_router, notification_router):
        app.include_router(router)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Session bookings, chat purchase orders with per-size stock, event seats "
            "and the in-app notification inbox. Send `Authorization: Bearer <token>`."
        ),
        lifespan=lifespan,
    )
    _register_middleware(app)
    _register_error_handlers(app)
    _register_routes(app)
    Instrumentator(excluded_handlers=["/metrics", "/health"]).instrument(app).expose(
        app, endpoint="/metrics", tags=["Monitoring"]
    )
    return app


app = create_app()
