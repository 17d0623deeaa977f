"""
app.py — Report Service Application
======================================
FastAPI application serving the read-only ledger report API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from shard_auditor.api.routes import router
from shard_auditor.config import settings

logger = logging.getLogger("shard-auditor")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Report API starting on %s:%d", settings.API_HOST, settings.API_PORT)
    logger.info("Ledger: %s", settings.ledger_dir)
    yield
    logger.info("Report API shutting down")


app = FastAPI(
    title="Shard Auditor — Ledger Report API",
    description=(
        "Read-only view of shard audit results.\n\n"
        "Each audited node has one entry mapping shard hash to "
        "whether the node served bytes matching that hash."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
