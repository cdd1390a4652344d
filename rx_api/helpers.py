"""Shared helpers, JSON fallback state and engine wiring for the Prescription Matching API."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from rx_matching.config import MatcherConfig, load_config
from rx_matching.inventory_matcher import InventoryMatcherFactory
from rx_matching.orchestrator import MatchingOrchestrator
from rx_matching.sources import (
    InMemoryCatalogSource,
    InMemoryInventorySource,
    InMemoryPharmacyDirectory,
)

from . import db
from .pg_sources import PgCatalogSource, PgInventorySource, PgPharmacyDirectory

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.environ.get("RXM_DATA_DIR", ROOT / "sample-data"))

# ---------------------------------------------------------------------------
# JSON fallback state (populated by load_json_sources)
# ---------------------------------------------------------------------------

_DIRECTORY = InMemoryPharmacyDirectory([])
_INVENTORY = InMemoryInventorySource([])
_CATALOG = InMemoryCatalogSource([])
_CONFIG: MatcherConfig | None = None


def load_json_sources(data_dir: Path | None = None) -> None:
    """
    Load pharmacies, flat inventory and catalog from JSON files.

    Missing files leave the corresponding source empty.
    """
    global _DIRECTORY, _INVENTORY, _CATALOG  # noqa: PLW0603

    data_dir = data_dir or DATA_DIR
    pharmacies_path = data_dir / "pharmacies.json"
    inventory_path = data_dir / "inventory.json"
    catalog_path = data_dir / "catalog.json"

    _DIRECTORY = (
        InMemoryPharmacyDirectory.from_json(pharmacies_path)
        if pharmacies_path.exists()
        else InMemoryPharmacyDirectory([])
    )
    _INVENTORY = (
        InMemoryInventorySource.from_json(inventory_path)
        if inventory_path.exists()
        else InMemoryInventorySource([])
    )
    _CATALOG = (
        InMemoryCatalogSource.from_json(catalog_path)
        if catalog_path.exists()
        else InMemoryCatalogSource([])
    )
    logger.info(
        "Loaded JSON sources from %s: %d pharmacies, %d inventory rows, %d catalog entries",
        data_dir, len(_DIRECTORY), len(_INVENTORY), len(_CATALOG),
    )


def get_json_counts() -> dict[str, int]:
    return {
        "pharmacies": len(_DIRECTORY),
        "inventory": len(_INVENTORY),
        "catalog": len(_CATALOG),
    }


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------


def get_config() -> MatcherConfig:
    """Engine configuration, loaded once per process."""
    global _CONFIG  # noqa: PLW0603
    if _CONFIG is None:
        _CONFIG = load_config()
        logger.info(
            "Matcher config: eligibility=%s strategies=%s matcher=%s workers=%d timeout=%.1fs",
            _CONFIG.eligibility_mode.value,
            ",".join(_CONFIG.inventory_strategies),
            _CONFIG.name_matcher,
            _CONFIG.max_workers,
            _CONFIG.timeout_seconds,
        )
    return _CONFIG


def set_config(config: MatcherConfig | None) -> None:
    """Replace the cached configuration (None reloads on next use)."""
    global _CONFIG  # noqa: PLW0603
    _CONFIG = config


def build_orchestrator() -> MatchingOrchestrator:
    """Orchestrator over PostgreSQL when the pool is up, JSON sources otherwise."""
    config = get_config()
    if db.is_available():
        directory = PgPharmacyDirectory()
        factory = InventoryMatcherFactory(config, PgInventorySource(), PgCatalogSource())
    else:
        directory = _DIRECTORY
        factory = InventoryMatcherFactory(config, _INVENTORY, _CATALOG)
    return MatchingOrchestrator(directory, factory, config)
