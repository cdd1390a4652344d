#!/usr/bin/env python3
"""
Prescription Matching — End-to-End Demo

Runs one matching call against the sample JSON data:
  1. Load: pharmacies, flat inventory and catalog from sample-data/
  2. Match: find pharmacies in range that stock every medication
  3. Report: print the ranked results and the notification targets

Usage:
    python sample-data/run_demo.py
    python sample-data/run_demo.py --medications amoxicillin paracetamol --radius 10
    python sample-data/run_demo.py --eligibility relaxed
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT / "sample-data"

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rx_matching.config import load_config  # noqa: E402
from rx_matching.errors import InputValidationError  # noqa: E402
from rx_matching.inventory_matcher import InventoryMatcherFactory  # noqa: E402
from rx_matching.models import MatchReport, RequiredMedication  # noqa: E402
from rx_matching.orchestrator import MatchingOrchestrator  # noqa: E402
from rx_matching.prescription import build_target_pharmacies  # noqa: E402
from rx_matching.sources import (  # noqa: E402
    InMemoryCatalogSource,
    InMemoryInventorySource,
    InMemoryPharmacyDirectory,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def step_load() -> MatchingOrchestrator:
    """Build an orchestrator over the sample JSON files."""
    print("=" * 65)
    print("STEP 1: LOAD")
    print("=" * 65)

    config = load_config()
    directory = InMemoryPharmacyDirectory.from_json(DATA_DIR / "pharmacies.json")
    inventory = InMemoryInventorySource.from_json(DATA_DIR / "inventory.json")
    catalog = InMemoryCatalogSource.from_json(DATA_DIR / "catalog.json")

    print(f"  Pharmacies  : {len(directory)}")
    print(f"  Inventory   : {len(inventory)} rows")
    print(f"  Catalog     : {len(catalog)} entries")
    print(f"  Strategies  : {', '.join(config.inventory_strategies)}")
    print(f"  Eligibility : {config.eligibility_mode.value}")
    print()

    factory = InventoryMatcherFactory(config, inventory, catalog)
    return MatchingOrchestrator(directory, factory, config)


def step_match(orchestrator: MatchingOrchestrator, args: argparse.Namespace) -> MatchReport:
    """Run a single matching call."""
    print("=" * 65)
    print("STEP 2: MATCH")
    print("=" * 65)
    print(f"  Patient     : ({args.lat}, {args.lon})")
    print(f"  Radius      : {args.radius} km")
    print(f"  Medications : {', '.join(args.medications)}")
    print()

    return orchestrator.find_matching_pharmacies(
        [RequiredMedication(name=m) for m in args.medications],
        {"latitude": args.lat, "longitude": args.lon},
        args.radius,
        eligibility_mode=args.eligibility,
    )


def step_report(report: MatchReport, limit: int) -> None:
    """Print a human-readable match report."""
    print("=" * 65)
    print("STEP 3: MATCH REPORT")
    print("=" * 65)

    if not report.results:
        print("\n  No pharmacy in range stocks every medication.\n")

    for rank, r in enumerate(report.top(limit), start=1):
        print(f"  {rank}. {r.pharmacy_name}  ({r.distance_km:.1f} km, ~{r.estimated_travel_minutes} min)")
        print(f"     {r.address}")
        for m in r.available_medications:
            price = f"{m.price:.2f}" if m.price is not None else "n/a"
            print(
                f"       {m.required:<14} → {m.matched_name} "
                f"[{m.match_type}/{m.source}] qty={m.quantity} price={price}"
            )
        print()

    for w in report.warnings:
        print(f"  WARNING ({w.reason}): {w.detail}")

    targets = build_target_pharmacies(report.results)
    print("  " + "-" * 63)
    print(
        f"  SUMMARY: {len(report.results)} qualifying of {report.candidates_evaluated} candidates, "
        f"{len(targets)} notification targets, {report.elapsed_ms:.1f} ms"
        + (" [partial]" if report.partial else "")
    )
    print("=" * 65)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main():
    parser = argparse.ArgumentParser(description="Prescription matching demo on sample data")
    parser.add_argument("--lat", type=float, default=12.9716, help="Patient latitude")
    parser.add_argument("--lon", type=float, default=77.5946, help="Patient longitude")
    parser.add_argument("--radius", type=float, default=15.0, help="Search radius in km")
    parser.add_argument(
        "--medications",
        nargs="+",
        default=["Amoxicillin", "Paracetamol"],
        help="Required medication names",
    )
    parser.add_argument(
        "--eligibility",
        choices=["strict", "relaxed"],
        default=None,
        help="Override the configured eligibility mode",
    )
    parser.add_argument("--limit", type=int, default=10, help="Results to display")
    args = parser.parse_args()

    print()
    print("  Prescription Matching — End-to-End Demo")
    print()

    orchestrator = step_load()
    try:
        report = step_match(orchestrator, args)
    except InputValidationError as e:
        print(f"Invalid input ({e.field}): {e}")
        sys.exit(2)
    step_report(report, args.limit)


if __name__ == "__main__":
    main()
