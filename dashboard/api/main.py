"""
KPI Report Hub — API Server
============================

Quarterly KPI reports for connected HubSpot portals, with optional Google
Analytics traffic and Google Business Profile data.

Route groups:
  /api/health              - Health check
  /api/accounts/*          - Connected HubSpot accounts
  /api/reports/*           - Generate and list quarterly reports
  /api/goals/*             - Quarterly goals (metric, form, pipeline)
  /api/settings/*          - Per-account report settings
  /api/tracked/*           - Tracked forms and lists
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scripts.lib.errors import (
    APIAuthError,
    APINotFoundError,
    APIPermissionError,
    ConfigError,
    HubError,
    MissingConfigurationError,
    NarrativeGenerationError,
)

load_dotenv()

logger = logging.getLogger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting KPI Report Hub...")

    from integrations.hubspot import HubSpotTokenRefresher
    from reporting.store import ReportStore
    from scripts.lib.token_cache import ConnectionManager

    store = ReportStore()
    app.state.store = store
    app.state.connections = ConnectionManager(
        HubSpotTokenRefresher(cipher=store.cipher), persist=store.save_token,
    )

    # Supabase connection check
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        logger.info("Supabase connected")
    except Exception as e:
        logger.warning("Supabase not available: %s", e)

    logger.info("KPI Report Hub ready")
    yield
    logger.info("Shutting down KPI Report Hub...")


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:8001"
).split(",")

app = FastAPI(
    title="KPI Report Hub",
    version="1.0.0",
    description="Quarterly marketing KPI reports from HubSpot, GA4 and Business Profile",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error Mapping ────────────────────────────────────────────

def status_for(exc: HubError) -> int:
    """HTTP status for a hub error."""
    if isinstance(exc, APIPermissionError):
        return 403
    if isinstance(exc, APINotFoundError):
        return 404
    if isinstance(exc, APIAuthError):
        return 401
    if isinstance(exc, (ConfigError, MissingConfigurationError)):
        return 400
    if isinstance(exc, NarrativeGenerationError):
        return 502
    return 500


@app.exception_handler(HubError)
async def hub_error_handler(request: Request, exc: HubError):
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"error": exc.code, "detail": exc.message}
    missing_scopes = getattr(exc, "missing_scopes", None)
    if missing_scopes:
        body["missing_scopes"] = missing_scopes
    return JSONResponse(status_code=status, content=body)


# ─── Include Routers ──────────────────────────────────────────

from dashboard.api.routers.accounts import router as accounts_router
from dashboard.api.routers.goals import router as goals_router
from dashboard.api.routers.reports import router as reports_router
from dashboard.api.routers.settings import router as settings_router
from dashboard.api.routers.tracked import router as tracked_router

app.include_router(accounts_router)
app.include_router(reports_router)
app.include_router(goals_router)
app.include_router(settings_router)
app.include_router(tracked_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with service status."""
    supabase_ok = False
    try:
        from scripts.lib.supabase_client import get_client
        get_client()
        supabase_ok = True
    except Exception as e:
        logger.debug("Supabase health check failed: %s", e)

    return {
        "status": "healthy",
        "service": "KPI Report Hub",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "supabase": supabase_ok,
            "google_analytics": bool(
                os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON") or os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
            ),
            "ai_provider": os.getenv("AI_PROVIDER", "groq"),
        },
    }
