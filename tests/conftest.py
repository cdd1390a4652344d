"""Test configuration — shared fixtures for the matching engine tests."""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent

# Allow running the suite from a checkout without `pip install -e .`
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rx_matching.config import MatcherConfig  # noqa: E402
from rx_matching.geo_proximity import Coordinate  # noqa: E402
from rx_matching.inventory_matcher import InventoryMatcherFactory  # noqa: E402
from rx_matching.models import InventoryRecord, Pharmacy  # noqa: E402
from rx_matching.orchestrator import MatchingOrchestrator  # noqa: E402
from rx_matching.sources import (  # noqa: E402
    InMemoryCatalogSource,
    InMemoryInventorySource,
    InMemoryPharmacyDirectory,
)


@pytest.fixture()
def patient():
    """Bangalore city centre."""
    return {"latitude": 12.9716, "longitude": 77.5946}


@pytest.fixture()
def config():
    """Both strategies, small pool, no retry back-off."""
    return MatcherConfig(
        inventory_strategies=["flat", "catalog"],
        max_workers=4,
        timeout_seconds=5.0,
        retry_attempts=2,
        retry_min_wait=0.0,
        retry_max_wait=0.0,
    )


@pytest.fixture()
def make_pharmacy():
    """Factory for approved, verified pharmacies (override any field)."""

    def _make(pid, lat, lon, **kwargs):
        fields = {
            "name": f"Pharmacy {pid}",
            "address": f"{pid} Main Road",
            "registration_status": "approved",
            "is_verified": True,
        }
        fields.update(kwargs)
        location = Coordinate(lat, lon) if lat is not None and lon is not None else None
        return Pharmacy(id=pid, location=location, **fields)

    return _make


@pytest.fixture()
def stock():
    """Factory for usable inventory rows."""

    def _stock(pharmacy_id, medicine_name, quantity=50, status="available", price=5.0):
        return InventoryRecord(
            pharmacy_id=pharmacy_id,
            medicine_name=medicine_name,
            quantity_available=quantity,
            price_per_unit=price,
            status=status,
            item_id=f"{pharmacy_id}:{medicine_name}",
        )

    return _stock


@pytest.fixture()
def build_orchestrator(config):
    """Wire an orchestrator over in-memory sources."""

    def _build(pharmacies, records=(), catalog=(), cfg=None):
        cfg = cfg or config
        factory = InventoryMatcherFactory(
            cfg,
            InMemoryInventorySource(records),
            InMemoryCatalogSource(catalog),
        )
        return MatchingOrchestrator(InMemoryPharmacyDirectory(pharmacies), factory, cfg)

    return _build
