"""Health check endpoint."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import psycopg2
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from .. import db
from ..helpers import get_config, get_json_counts

logger = logging.getLogger(__name__)

router = APIRouter()


def _db_counts() -> dict[str, int]:
    with db.get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT (SELECT count(*) FROM pharmacies),
                       (SELECT count(*) FROM inventory_items),
                       (SELECT count(*) FROM medicines)
                """
            )
            pharmacies, inventory, catalog = cur.fetchone()
    return {"pharmacies": pharmacies, "inventory": inventory, "catalog": catalog}


@router.get("/api/health")
async def health(request: Request):
    """Health check — reports data mode, record counts, version, DB latency."""
    mode = "database" if db.is_available() else "json"
    db_ok = False
    db_latency_ms: float | None = None

    if db.is_available():
        try:
            t0 = time.monotonic()
            counts = _db_counts()
            db_latency_ms = round((time.monotonic() - t0) * 1000, 1)
            db_ok = True
        except (psycopg2.Error, RuntimeError) as e:
            logger.warning("Health check database query failed: %s", e)
            counts = get_json_counts()
            mode = "json"
    else:
        counts = get_json_counts()

    server_started_at = request.app.state.server_started_at
    uptime_seconds = round((datetime.now(timezone.utc) - server_started_at).total_seconds())
    config = get_config()

    # JSON mode still serves matches, so it is degraded rather than down
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy" if db_ok else "degraded",
            "mode": mode,
            "record_counts": counts,
            "version": request.app.version,
            "database_connected": db_ok,
            "eligibility_mode": config.eligibility_mode.value,
            "inventory_strategies": list(config.inventory_strategies),
            "started_at": server_started_at.isoformat(),
            "uptime_seconds": uptime_seconds,
            "checks": {
                "database": {
                    "status": "up" if db_ok else "down",
                    "latency_ms": db_latency_ms,
                },
            },
        },
    )
