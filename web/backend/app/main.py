"""FastAPI application for the tiermod moderation service.

Provides REST API endpoints wrapping the tiermod package for:
- Content analysis through the keyword, link safety and AI tiers
- Moderation config and blocklist management
- The human review queue
- Blocking and unblocking users
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tiermod import __version__
from web.backend.app.routers import moderation

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(
    title="tiermod API",
    description=(
        "REST API for tiered content moderation. "
        "Provides endpoints for analyzing content, managing the moderation "
        "config, reviewing queued content, and blocking users."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "tiermod API",
        "version": __version__,
        "description": "Tiered content moderation REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
