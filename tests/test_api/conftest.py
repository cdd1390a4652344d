"""Shared fixtures for the API test suite.

All tests run in JSON fallback mode (no database required).
We load the bundled sample-data files into helpers, install a test
MatcherConfig, and patch db.is_available() → False.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from rx_matching.config import MatcherConfig

SAMPLE_DIR = Path(__file__).resolve().parent.parent.parent / "sample-data"


@pytest.fixture()
def app():
    """FastAPI app running in JSON fallback mode (no DB)."""
    with (
        patch("rx_api.db.is_available", return_value=False),
        patch("rx_api.db.init_pool", return_value=False),
        patch("rx_api.db.close_pool"),
    ):
        from rx_api.app import app as _app
        from rx_api import helpers

        # Seed JSON fallback data
        helpers.load_json_sources(SAMPLE_DIR)
        helpers.set_config(
            MatcherConfig(
                inventory_strategies=["flat", "catalog"],
                max_workers=4,
                retry_min_wait=0.0,
                retry_max_wait=0.0,
            )
        )

        _app.state.server_started_at = datetime(2026, 10, 1, 0, 0, 0, tzinfo=timezone.utc)

        yield _app

        # Cleanup
        helpers.load_json_sources(Path("/nonexistent"))
        helpers.set_config(None)


@pytest.fixture()
def client(app):
    return TestClient(app, raise_server_exceptions=False)
