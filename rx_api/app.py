#!/usr/bin/env python3
"""
Prescription Matching — HTTP API

Dual-mode FastAPI server:
  • Database mode — reads pharmacies, inventory and catalog from PostgreSQL
  • JSON fallback — matches against the sample-data JSON files when the
    database is unavailable

Usage:
    uvicorn rx_api.app:app --reload --port 8000
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from rx_matching.errors import InputValidationError

from . import db
from .helpers import get_config, load_json_sources
from .routes import health, match

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Prescription Matching",
    version="0.1.0",
    description="Find nearby pharmacies that can fill every medication on a prescription",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(match.router)
app.include_router(health.router)

app.state.server_started_at = datetime.now(timezone.utc)


@app.exception_handler(InputValidationError)
async def input_validation_error(request: Request, exc: InputValidationError):
    logger.info("Rejected match request on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "field": exc.field},
    )


@app.on_event("startup")
async def startup():
    # Fail fast on a bad config file or RXM_* override
    config = get_config()
    # Always load JSON (fallback data)
    load_json_sources()
    # One pool for all requests; queries and checkouts bounded by the match deadline
    if db.init_pool(
        maxconn=max(config.max_workers + 2, 4),
        statement_timeout=config.timeout_seconds,
        checkout_timeout=config.timeout_seconds,
    ):
        logger.info("Running in DATABASE mode")
    else:
        logger.info("Running in JSON FALLBACK mode")


@app.on_event("shutdown")
async def shutdown():
    db.close_pool()
