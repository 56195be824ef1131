"""ADSYNC — FastAPI Application Entry Point.

Meta ads sync service: pulls campaigns, ad sets, ads and daily insights
into a per-project store for dashboards.
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.database import _mask_url, backend_name, db_url, init_db, test_connection
from app.scheduler.jobs import start_scheduler, stop_scheduler
from app.api.sync_routes import router as sync_router
from app.api.project_routes import router as project_router
from app.api.meta_routes import router as meta_router
from app.core.logging import get_logger

logger = get_logger("main")


IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 ADSYNC starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {e}")
    else:
        logger.error("❌ Database NOT connected — endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler()
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("ADSYNC shut down")


app = FastAPI(
    title="ADSYNC",
    description="Meta Ads Sync — keep campaigns, ad sets, ads and daily insights fresh per project.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(sync_router)
app.include_router(project_router)
app.include_router(meta_router)

# Cached creative images
MEDIA_DIR = Path(settings.image_cache_dir)
MEDIA_DIR.mkdir(parents=True, exist_ok=True)
app.mount(settings.image_cache_url, StaticFiles(directory=str(MEDIA_DIR)), name="creatives")


@app.get("/health", tags=["System"])
async def health_check():
    """Service liveness plus database reachability."""
    error = None
    connected = False
    try:
        connected = test_connection()
    except Exception as e:
        error = str(e)

    return {
        "status": "healthy" if connected else "degraded",
        "service": "adsync",
        "version": "1.0.0",
        "database": {
            "connected": connected,
            "backend": backend_name(db_url),
            "url": _mask_url(db_url),
            "error": error,
        },
        "environment": "serverless" if IS_SERVERLESS else "local",
        "scheduler": settings.scheduler_enabled and not IS_SERVERLESS,
    }
