#!/usr/bin/env python3
"""
Prescription Matching — Inventory Matcher

Decides whether a pharmacy stocks a required medication.  Two lookup
strategies honour the same contract and can be combined:

    flat     the pharmacy's own inventory rows, compared with a NameMatcher
    catalog  the shared medicine catalog, checked for embedded stock at the
             pharmacy

A strategy returns a MatchOutcome or None.  The pharmacy is missing a
medication only when every configured strategy returns None.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from .config import MatcherConfig
from .errors import UpstreamQueryError
from .models import InventoryRecord, MatchOutcome
from .name_similarity import NameMatcher, get_name_matcher, normalize_medicine_name
from .sources import CatalogSource, InventorySource, call_upstream

logger = logging.getLogger(__name__)

SOURCE_INVENTORY = "inventory"
SOURCE_CATALOG = "catalog"
MATCH_CATALOG = "catalog"


class MatchStrategy(Protocol):
    name: str

    def match(self, required: str, pharmacy_id: str) -> MatchOutcome | None:
        ...


# ---------------------------------------------------------------------------
# Flat inventory
# ---------------------------------------------------------------------------


class FlatInventoryStrategy:
    """
    Match against the pharmacy's inventory rows.

    Only usable rows (quantity > 0, status available/low-stock) take part.
    Rows are fetched once per pharmacy and reused for every required name
    of the same evaluation.
    """

    name = "flat"

    def __init__(
        self,
        source: InventorySource,
        name_matcher: NameMatcher,
        config: MatcherConfig,
    ):
        self.source = source
        self.name_matcher = name_matcher
        self.config = config
        self._cache: dict[str, tuple[list[InventoryRecord], list[str]]] = {}

    def _stock(self, pharmacy_id: str) -> tuple[list[InventoryRecord], list[str]]:
        if pharmacy_id not in self._cache:
            records = call_upstream(
                self.source.records_for,
                pharmacy_id,
                config=self.config,
                what="inventory",
            )
            usable = [r for r in records if r.is_usable]
            self._cache[pharmacy_id] = (
                usable,
                [normalize_medicine_name(r.medicine_name) for r in usable],
            )
            logger.debug(
                "Pharmacy %s: %d of %d inventory rows usable",
                pharmacy_id, len(usable), len(records),
            )
        return self._cache[pharmacy_id]

    def match(self, required: str, pharmacy_id: str) -> MatchOutcome | None:
        usable, normalized = self._stock(pharmacy_id)
        hit = self.name_matcher.match(required, normalized)
        if hit is None:
            return None

        index, match_type = hit
        rec = usable[index]
        return MatchOutcome(
            required=required,
            matched_name=rec.medicine_name,
            quantity=rec.quantity_available,
            price=rec.price_per_unit,
            status=rec.status,
            match_type=match_type,
            source=SOURCE_INVENTORY,
            record_id=rec.item_id,
        )


# ---------------------------------------------------------------------------
# Catalog with embedded inventory
# ---------------------------------------------------------------------------


class CatalogStrategy:
    """
    Match through the shared medicine catalog.

    Candidate entries come back in query order, capped at ``limit``; the
    first one carrying usable stock for the pharmacy wins.
    """

    name = "catalog"

    def __init__(self, source: CatalogSource, config: MatcherConfig):
        self.source = source
        self.config = config
        self.limit = config.catalog_candidate_limit
        self._cache: dict[str, list] = {}

    def match(self, required: str, pharmacy_id: str) -> MatchOutcome | None:
        if required not in self._cache:
            self._cache[required] = call_upstream(
                self.source.search,
                required,
                self.limit,
                config=self.config,
                what="catalog",
            )

        for entry in self._cache[required][: self.limit]:
            rec = entry.stock_for(pharmacy_id)
            if rec is None:
                continue
            return MatchOutcome(
                required=required,
                matched_name=entry.name,
                quantity=rec.quantity_available,
                price=rec.price_per_unit,
                status=rec.status,
                match_type=MATCH_CATALOG,
                source=SOURCE_CATALOG,
                record_id=entry.id,
            )
        return None


# ---------------------------------------------------------------------------
# Combined matcher
# ---------------------------------------------------------------------------


class InventoryMatcher:
    """
    Try each configured strategy in order; the first hit wins.

    Built fresh for every candidate evaluation so strategy caches never
    outlive one pharmacy (see ``InventoryMatcherFactory``).
    """

    def __init__(self, strategies: Sequence[MatchStrategy]):
        if not strategies:
            raise ValueError("InventoryMatcher needs at least one strategy")
        self.strategies = list(strategies)
        self.degraded = False

    def match(self, required: str, pharmacy_id: str) -> MatchOutcome | None:
        for strategy in self.strategies:
            try:
                outcome = strategy.match(required, pharmacy_id)
            except UpstreamQueryError as e:
                # Treated as no match; the orchestrator reports degradation
                self.degraded = True
                logger.warning(
                    "Strategy %s unavailable for pharmacy %s (%r): %s",
                    strategy.name, pharmacy_id, required, e,
                )
                continue
            if outcome is not None:
                logger.debug(
                    "Pharmacy %s: %r matched %r via %s",
                    pharmacy_id, required, outcome.matched_name, outcome.match_type,
                    extra={
                        "pharmacy_id": pharmacy_id,
                        "required": required,
                        "match_type": outcome.match_type,
                        "match_source": outcome.source,
                    },
                )
                return outcome
        return None


class InventoryMatcherFactory:
    """Builds one InventoryMatcher per candidate from shared sources."""

    def __init__(
        self,
        config: MatcherConfig,
        inventory_source: InventorySource | None = None,
        catalog_source: CatalogSource | None = None,
    ):
        missing = [
            s for s, src in (("flat", inventory_source), ("catalog", catalog_source))
            if s in config.inventory_strategies and src is None
        ]
        if missing:
            raise ValueError(f"No source configured for strategies {missing}")

        self.config = config
        self.inventory_source = inventory_source
        self.catalog_source = catalog_source
        self.name_matcher = get_name_matcher(
            config.name_matcher,
            **({"threshold": config.token_set_threshold} if config.name_matcher == "token_set" else {}),
        )

    def __call__(self) -> InventoryMatcher:
        strategies: list[MatchStrategy] = []
        for name in self.config.inventory_strategies:
            if name == "flat":
                strategies.append(
                    FlatInventoryStrategy(self.inventory_source, self.name_matcher, self.config)
                )
            elif name == "catalog":
                strategies.append(CatalogStrategy(self.catalog_source, self.config))
        return InventoryMatcher(strategies)
