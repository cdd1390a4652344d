"""
Prescription Matching API — PostgreSQL Connection Budget

One psycopg2 ThreadedConnectionPool shared by every matching request.
Matcher workers from concurrent requests all draw from it, so checkout is
gated by a BoundedSemaphore sized to the pool: a worker that finds the
pool drained waits for a connection instead of failing, and gives up with
PoolError only after ``checkout_timeout`` seconds.

Each connection carries a server-side statement_timeout so a stuck query
cannot outlive the matcher's deadline.

Settings come from RXM_DB_* environment variables.  When the database is
unreachable, init_pool() returns False and the app serves the JSON sample
data instead.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import psycopg2
from psycopg2 import pool, extras  # noqa: F401  (extras re-exported for callers)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def connection_settings() -> dict[str, object]:
    """libpq keyword arguments from RXM_DB_* variables."""
    return {
        "host": os.environ.get("RXM_DB_HOST", "localhost"),
        "port": int(os.environ.get("RXM_DB_PORT", "5432")),
        "dbname": os.environ.get("RXM_DB_NAME", "rx_matching"),
        "user": os.environ.get("RXM_DB_USER", "rxm"),
        "password": os.environ.get("RXM_DB_PASSWORD", "rxm_local_dev"),
    }


@dataclass
class _PoolState:
    pool: pool.ThreadedConnectionPool
    slots: threading.BoundedSemaphore
    maxconn: int
    checkout_timeout: float


_state: _PoolState | None = None


# ---------------------------------------------------------------------------
# Pool lifecycle
# ---------------------------------------------------------------------------


def init_pool(
    minconn: int = 2,
    maxconn: int = 20,
    *,
    statement_timeout: float | None = None,
    checkout_timeout: float = 10.0,
) -> bool:
    """
    Open the shared pool and check that the matching tables are reachable.

    Parameters
    ----------
    minconn, maxconn : int
        Pool bounds.  At most ``maxconn`` connections are checked out at once,
        across all requests.
    statement_timeout : float, optional
        Seconds; applied per connection as PostgreSQL's statement_timeout.
    checkout_timeout : float
        Seconds a caller waits for a free connection before PoolError.

    Returns False (and leaves no pool behind) when the database is unusable.
    """
    global _state
    close_pool()

    settings = connection_settings()
    if statement_timeout is not None:
        settings["options"] = f"-c statement_timeout={max(int(statement_timeout * 1000), 1)}"

    opened: pool.ThreadedConnectionPool | None = None
    try:
        opened = pool.ThreadedConnectionPool(minconn, maxconn, **settings)
        conn = opened.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM pharmacies")
                pharmacies = cur.fetchone()[0]
        finally:
            opened.putconn(conn)
    except psycopg2.Error as e:
        logger.warning("Database unavailable, matching against JSON sample data: %s", e)
        if opened is not None:
            opened.closeall()
        return False

    _state = _PoolState(
        pool=opened,
        slots=threading.BoundedSemaphore(maxconn),
        maxconn=maxconn,
        checkout_timeout=checkout_timeout,
    )
    logger.info(
        "Connected to %s@%s:%s/%s with %d pooled connections (%d pharmacies)",
        settings["user"], settings["host"], settings["port"], settings["dbname"],
        maxconn, pharmacies,
    )
    return True


def close_pool() -> None:
    """Close every pooled connection. Called at app shutdown."""
    global _state
    if _state is None:
        return
    _state.pool.closeall()
    _state = None
    logger.info("Database pool closed.")


def is_available() -> bool:
    return _state is not None


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


@contextmanager
def get_conn() -> Iterator:
    """
    Borrow a pooled connection for one unit of work.

    Blocks while all ``maxconn`` connections are out.  Commits when the block
    exits cleanly, rolls back otherwise.

    Raises
    ------
    RuntimeError
        The pool was never opened (JSON mode).
    psycopg2.pool.PoolError
        No connection came free within ``checkout_timeout`` seconds.
    """
    state = _state
    if state is None:
        raise RuntimeError("Database pool not initialized")
    if not state.slots.acquire(timeout=state.checkout_timeout):
        raise pool.PoolError(
            f"no free connection within {state.checkout_timeout:.1f}s "
            f"({state.maxconn} in use)"
        )
    try:
        conn = state.pool.getconn()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            state.pool.putconn(conn)
    finally:
        state.slots.release()
