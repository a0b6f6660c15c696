"""
Shortly: link shortener with click analytics.
Main application entry point.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.admin import router as admin_router
from app.api.analytics import router as analytics_router
from app.api.auth import router as auth_router
from app.api.links import router as links_router
from app.api.redirect import router as redirect_router
from app.config import get_settings
from app.core.click_queue import click_queue, run_worker
from app.core.mailer import mail_mode
from app.middleware.security import SecurityHeadersMiddleware
from app.models.database import dispose_engine, init_models

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("shortly_starting", base_url=settings.base_url, environment=settings.environment,
                mail=mail_mode())

    if settings.create_tables:
        await init_models()

    await click_queue.init(settings.redis_url, settings.queue_name)

    worker = None
    stop = asyncio.Event()
    if click_queue.enabled and settings.queue_run_worker:
        worker = asyncio.create_task(run_worker(click_queue, stop))

    yield

    logger.info("shortly_shutting_down")
    stop.set()
    if worker is not None:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
    await click_queue.close()
    await dispose_engine()


app = FastAPI(
    title="Shortly",
    description="Short links with password gates, expiry, click caps and analytics.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

# CORS: empty allowlist means "anyone" only outside production
origins = get_settings().origins
if not origins and not get_settings().is_production:
    origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# --- Routes ---
app.include_router(auth_router)
app.include_router(links_router)
app.include_router(analytics_router)
app.include_router(admin_router)
app.include_router(redirect_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "shortly", "version": VERSION}
