"""
Document Intelligence - Application Entry Point

FastAPI application for logistics document upload, grounded question
answering and structured shipment extraction.

Start locally:
    uvicorn docintel.main:app --host 0.0.0.0 --port 8001 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from docintel.api.v1.documents import router as documents_router
from docintel.core.config import settings
from docintel.core.database import dispose_engine, get_engine
from docintel.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        1. Configure logging.
        2. Validate database connectivity.

    Shutdown:
        1. Dispose database engine.
    """
    setup_logging()
    logger.info("Starting %s...", settings.PROJECT_NAME)

    engine = get_engine()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except Exception:
        logger.exception("Database connection failed")
        raise

    yield

    await dispose_engine()
    logger.info("%s shutdown complete", settings.PROJECT_NAME)


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Document upload, grounded question answering, and shipment extraction.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(documents_router, prefix="/api/v1", tags=["Documents"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check for load balancers and orchestrators."""
    return {"status": "ok", "service": "docintel"}
