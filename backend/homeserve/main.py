# backend/homeserve/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI

from . import models  # noqa: F401
from .core.config import settings
from .database import Base, engine
from .routes.v1 import (
    admin as admin_v1,
    bookings as bookings_v1,
    payments as payments_v1,
    prometheus as prometheus_v1,
    wallet as wallet_v1,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

API_TITLE = "HomeServe API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables for the configured database, then serve."""
    logger.info(
        "Starting %s %s",
        API_TITLE,
        API_VERSION,
        extra={"environment": settings.environment},
    )
    Base.metadata.create_all(bind=engine)
    yield
    logger.info("Shutting down %s", API_TITLE)


app = FastAPI(
    title=API_TITLE,
    description="Booking lifecycle and settlement service for home-service professionals",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(bookings_v1.router, prefix="/bookings")
api_v1.include_router(wallet_v1.router, prefix="/wallet")
api_v1.include_router(admin_v1.router, prefix="/admin")
# Signature-verified, no bearer token
api_v1.include_router(payments_v1.router, prefix="/payments")

app.include_router(api_v1)
app.include_router(prometheus_v1.router)


@app.get("/health", include_in_schema=False)
async def health() -> Dict[str, str]:
    return {"status": "healthy", "environment": settings.environment}


__all__ = ["app"]
