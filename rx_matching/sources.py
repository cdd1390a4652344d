"""
Prescription Matching — Data Sources

Read-only collaborators the engine queries:

    PharmacyDirectory   find_eligible(criteria)        → [Pharmacy]
    InventorySource     records_for(pharmacy_id)       → [InventoryRecord]
    CatalogSource       search(normalized_name, limit) → [CatalogEntry]

In-memory implementations (optionally loaded from JSON files) live here;
PostgreSQL-backed ones live in rx_api.pg_sources.  Every upstream call the
engine makes goes through ``call_upstream`` so transient failures are
retried a bounded number of times before surfacing as UpstreamQueryError.

Dependencies:
    pip install tenacity
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import MatcherConfig
from .errors import UpstreamQueryError
from .models import CatalogEntry, EligibilityMode, InventoryRecord, Pharmacy

logger = logging.getLogger(__name__)

T = TypeVar("T")

# OSError covers ConnectionError, TimeoutError and socket failures
RETRYABLE_ERRORS = (UpstreamQueryError, OSError)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DirectoryCriteria:
    """What the directory should pre-select before exact filtering."""

    eligibility_mode: EligibilityMode = EligibilityMode.STRICT
    # (min_lat, max_lat, min_lon, max_lon); None means no spatial pre-filter
    bounding_box: tuple[float, float, float, float] | None = None


class PharmacyDirectory(Protocol):
    def find_eligible(self, criteria: DirectoryCriteria) -> list[Pharmacy]:
        ...


class InventorySource(Protocol):
    def records_for(self, pharmacy_id: str) -> list[InventoryRecord]:
        ...


class CatalogSource(Protocol):
    def search(self, normalized_name: str, limit: int) -> list[CatalogEntry]:
        ...


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


def retrying(config: MatcherConfig) -> Retrying:
    """Retry policy for upstream queries."""
    return Retrying(
        stop=stop_after_attempt(config.retry_attempts),
        wait=wait_exponential(
            multiplier=config.retry_min_wait,
            min=config.retry_min_wait,
            max=config.retry_max_wait,
        ),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )


def call_upstream(
    fn: Callable[..., T],
    *args: Any,
    config: MatcherConfig,
    what: str,
) -> T:
    """
    Call an upstream query with retries.

    Retryable failures that persist are re-raised as UpstreamQueryError;
    anything else (programming errors) propagates untouched.
    """
    try:
        return retrying(config)(fn, *args)
    except UpstreamQueryError:
        logger.warning("Upstream query %s failed after %d attempts", what, config.retry_attempts)
        raise
    except OSError as e:
        logger.warning(
            "Upstream query %s failed after %d attempts: %s", what, config.retry_attempts, e
        )
        raise UpstreamQueryError(f"{what} failed: {e}", source=what) from e


# ---------------------------------------------------------------------------
# JSON loading
# ---------------------------------------------------------------------------


def load_json_records(path: str | Path) -> list[dict[str, Any]]:
    """Load a JSON array of records from disk."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array in {path}, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryPharmacyDirectory:
    """Directory over a fixed list of pharmacies."""

    def __init__(self, pharmacies: Iterable[Pharmacy]):
        self._pharmacies = list(pharmacies)

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryPharmacyDirectory":
        return cls(Pharmacy.from_dict(r) for r in load_json_records(path))

    def __len__(self) -> int:
        return len(self._pharmacies)

    def find_eligible(self, criteria: DirectoryCriteria) -> list[Pharmacy]:
        return [p for p in self._pharmacies if p.is_eligible(criteria.eligibility_mode)]


class InMemoryInventorySource:
    """Flat inventory table indexed by pharmacy."""

    def __init__(self, records: Iterable[InventoryRecord]):
        self._by_pharmacy: dict[str, list[InventoryRecord]] = defaultdict(list)
        for rec in records:
            self._by_pharmacy[rec.pharmacy_id].append(rec)

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryInventorySource":
        return cls(InventoryRecord.from_dict(r) for r in load_json_records(path))

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_pharmacy.values())

    def records_for(self, pharmacy_id: str) -> list[InventoryRecord]:
        return list(self._by_pharmacy.get(pharmacy_id, ()))


class InMemoryCatalogSource:
    """Medicine catalog with embedded per-pharmacy stock."""

    def __init__(self, entries: Iterable[CatalogEntry]):
        self._entries = list(entries)

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemoryCatalogSource":
        return cls(CatalogEntry.from_dict(r) for r in load_json_records(path))

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, normalized_name: str, limit: int) -> list[CatalogEntry]:
        if not normalized_name:
            return []
        hits: list[CatalogEntry] = []
        for entry in self._entries:
            if not entry.is_listed:
                continue
            # Same rule as the ILIKE query in rx_api.pg_sources
            if any(normalized_name in n.lower() for n in entry.searchable_names()):
                hits.append(entry)
                if len(hits) >= limit:
                    break
        return hits
