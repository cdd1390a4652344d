"""
Bridge between a parsed prescription payload and the matching engine.

The payload is whatever the upstream prescription parser produced; only
the medication list is read here.  The target-pharmacy list built from a
match report is the hand-off to the notification service.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .models import MatchResult, RequiredMedication, StructuredQuantity, parse_quantity

logger = logging.getLogger(__name__)


def extract_required_medications(prescription: dict[str, Any]) -> list[RequiredMedication]:
    """
    Pull RequiredMedication items out of a parsed prescription.

    Each item is named by ``name``, else ``genericName``, else ``brandName``.
    Items without any usable name are skipped.  When the payload carries no
    medication list, the legacy single ``medicine`` field is used instead.
    """
    medications: list[RequiredMedication] = []

    for item in prescription.get("medications") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("genericName") or item.get("brandName")
        if not name or not str(name).strip():
            logger.debug("Skipping prescription item without a name: %s", item)
            continue

        quantity = parse_quantity(item.get("quantity"))
        unit = quantity.unit if isinstance(quantity, StructuredQuantity) else item.get("unit")
        medications.append(
            RequiredMedication(
                name=str(name).strip(),
                quantity=quantity,
                dosage=item.get("dosage") or item.get("strength"),
                unit=unit,
            )
        )

    if not medications and prescription.get("medicine"):
        medications.append(
            RequiredMedication(
                name=str(prescription["medicine"]).strip(),
                dosage=prescription.get("dosage"),
            )
        )

    logger.info("Extracted %d medications from prescription", len(medications))
    return medications


def build_target_pharmacies(results: Sequence[MatchResult]) -> list[dict[str, Any]]:
    """
    Notification payload: every qualifying pharmacy in ranked order.

    Always built from the full result list, never a display slice.
    """
    return [
        {
            "pharmacy_id": r.pharmacy_id,
            "priority": i,
            "match_score": r.score,
            "distance_km": r.distance_km,
        }
        for i, r in enumerate(results, start=1)
    ]
