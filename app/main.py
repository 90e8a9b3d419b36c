"""
SmartLink — one link per release, routed to the right streaming platforms.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.smartlink import router as smartlink_router
from app.api.preferences import router as preferences_router
from app.middleware.security import SecurityHeadersMiddleware
from app.models.database import dispose_engine
from app.config import get_settings

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "smartlink_starting",
        base_url=settings.base_url,
        geo_lookup=settings.geo_lookup_enabled,
        experiment=settings.experiment_enabled,
        global_fallback=settings.global_fallback_enabled,
    )
    yield
    await dispose_engine()
    logger.info("smartlink_shutting_down")


app = FastAPI(
    title="SmartLink",
    description="Territory-aware, per-visitor ordered streaming links with vendor tracking.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

# The JSON API is called from the SmartLink editor and pages on the same site
ALLOWED_ORIGINS = ["*"] if get_settings().debug else [get_settings().base_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "PUT", "DELETE"],
    allow_headers=["Content-Type", "X-Timezone"],
)

# --- Routes ---
app.include_router(smartlink_router)
app.include_router(preferences_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "smartlink", "version": "1.0.0"}
