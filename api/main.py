"""
Catalog Sync API - FastAPI application.

Provides endpoints for:
- Importing trending movies and series from TMDb
- Saving a single title on demand
- Translation backfill, provider refresh and provider reclassification
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routers import sync

logger = logging.getLogger(__name__)


def get_cors_origins() -> list[str]:
    """
    Get CORS allowed origins from environment.
    Set CORS_ALLOW_ORIGINS as comma-separated list of origins.
    """
    origins_str = os.getenv("CORS_ALLOW_ORIGINS", "")
    if not origins_str:
        return []
    return [origin.strip() for origin in origins_str.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up Catalog Sync API...")
    yield
    logger.info("Shutting down Catalog Sync API...")


app = FastAPI(
    title="Catalog Sync API",
    description="Trending import, translations and watch-provider sync from TMDb into Supabase",
    version="0.1.0",
    lifespan=lifespan,
)

# Credentials only with an explicit origin list.
cors_origins = get_cors_origins()
allow_credentials = len(cors_origins) > 0

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins if cors_origins else ["*"],
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(sync.router, prefix="/api/v1")


@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "catalog-sync"}


@app.get("/health")
def health():
    return {"status": "healthy"}
