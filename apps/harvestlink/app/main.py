import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from harvestlink_shared import SlidingWindowLimiter, RedisRateLimiter

from .config import settings
from .database import engine
from .errors import AppError, app_error_handler, http_exception_handler
from .middleware_request_id import RequestIDMiddleware
from .models import Base
from .routers import admin as admin_router
from .routers import auth as auth_router
from .routers import farmer as farmer_router
from .routers import farmers as farmers_router
from .routers import favorites as favorites_router
from .routers import market as market_router
from .routers import orders as orders_router
from .routers import profiles as profiles_router
from .sweeper import run_auto_complete_loop


log = logging.getLogger("harvestlink")

REQ = Counter("harvestlink_http_requests_total", "HTTP requests", ["method", "path", "status"])
REQ_DURATION = Histogram(
    "harvestlink_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if settings.AUTO_COMPLETE_POLL_SECS > 0:
            task = asyncio.create_task(run_auto_complete_loop(settings.AUTO_COMPLETE_POLL_SECS))
            log.info("auto-complete sweep every %ss", settings.AUTO_COMPLETE_POLL_SECS)
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="HarvestLink API", version="0.1.0", lifespan=lifespan)

    allowed_origins = settings.ALLOWED_ORIGINS or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    if settings.RATE_LIMIT_BACKEND.lower() == "redis":
        app.add_middleware(
            RedisRateLimiter,
            redis_url=settings.REDIS_URL,
            limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
            auth_boost=settings.RATE_LIMIT_AUTH_BOOST,
            prefix=settings.RATE_LIMIT_REDIS_PREFIX,
        )
    else:
        app.add_middleware(
            SlidingWindowLimiter,
            limit_per_minute=settings.RATE_LIMIT_PER_MINUTE,
            auth_boost=settings.RATE_LIMIT_AUTH_BOOST,
        )

    if settings.AUTO_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.get("/health")
    def health():
        db_state = "ok"
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
        except Exception as e:
            log.warning("health: database unreachable: %s", e)
            db_state = "degraded"
        return {"status": "ok", "env": settings.ENV, "db": db_state}

    @app.middleware("http")
    async def _metrics_mw(request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        REQ.labels(request.method, route, str(response.status_code)).inc()
        REQ_DURATION.labels(request.method, route).observe(time.perf_counter() - start)
        return response

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(auth_router.router)
    app.include_router(profiles_router.router)
    app.include_router(market_router.router)
    app.include_router(farmer_router.router)
    app.include_router(farmers_router.router)
    app.include_router(orders_router.router)
    app.include_router(favorites_router.router)
    app.include_router(admin_router.router)

    if settings.PUBLIC_MEDIA_BASE_URL.startswith("/"):
        os.makedirs(settings.MEDIA_DIR, exist_ok=True)
        app.mount(settings.PUBLIC_MEDIA_BASE_URL, StaticFiles(directory=settings.MEDIA_DIR), name="media")
    return app


app = create_app()


def main() -> None:
    import uvicorn
    reload = os.getenv("APP_RELOAD", "false").lower() == "true"
    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=reload)
