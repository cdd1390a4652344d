"""Tests for rx_matching — end-to-end matching orchestration."""

import logging
import threading
import time

import pytest

from rx_matching.candidate_filter import Candidate
from rx_matching.config import MatcherConfig
from rx_matching.errors import InputValidationError, UpstreamQueryError
from rx_matching.inventory_matcher import InventoryMatcherFactory
from rx_matching.models import CatalogEntry, InventoryRecord, PatientLocation, RequiredMedication
from rx_matching.orchestrator import (
    MatchingOrchestrator,
    normalize_required_names,
    validate_match_inputs,
)
from rx_matching.sources import (
    InMemoryCatalogSource,
    InMemoryInventorySource,
    InMemoryPharmacyDirectory,
)

# Degrees of latitude per km on the mean-radius sphere
KM = 1.0 / 111.195

MEDS = [{"name": "Amoxicillin"}, {"name": "Paracetamol"}]


class ExplodingInventory:
    """Inventory source that raises for selected pharmacies."""

    def __init__(self, inner, failing, exc):
        self.inner = inner
        self.failing = set(failing)
        self.exc = exc

    def records_for(self, pharmacy_id):
        if pharmacy_id in self.failing:
            raise self.exc
        return self.inner.records_for(pharmacy_id)


class BlockingInventory:
    """Inventory source that blocks selected pharmacies until released."""

    def __init__(self, inner, blocked):
        self.inner = inner
        self.blocked = set(blocked)
        self.release = threading.Event()

    def records_for(self, pharmacy_id):
        if pharmacy_id in self.blocked:
            self.release.wait(5)
        return self.inner.records_for(pharmacy_id)


class CountingDirectory(InMemoryPharmacyDirectory):
    """In-memory directory that records how often it was queried."""

    def __init__(self, pharmacies):
        super().__init__(pharmacies)
        self.calls = 0

    def find_eligible(self, criteria):
        self.calls += 1
        return super().find_eligible(criteria)


class StalledDirectory:
    """Directory whose query hangs until released."""

    def __init__(self):
        self.release = threading.Event()

    def find_eligible(self, criteria):
        self.release.wait(5)
        return []


# ---- Input validation -------------------------------------------------------


class TestValidateMatchInputs:
    def test_valid(self, patient):
        names, location, radius = validate_match_inputs(MEDS, patient, 10)
        assert names == ["amoxicillin", "paracetamol"]
        assert location == PatientLocation(12.9716, 77.5946)
        assert radius == 10.0

    def test_accepts_patient_location(self):
        _, location, _ = validate_match_inputs(MEDS, PatientLocation(1.0, 2.0), 5.0)
        assert location == PatientLocation(1.0, 2.0)

    @pytest.mark.parametrize(
        "meds,location,radius,field",
        [
            ([], {"latitude": 0, "longitude": 0}, 10, "medications"),
            ([{"name": "  !! "}], {"latitude": 0, "longitude": 0}, 10, "medications"),
            (MEDS, None, 10, "patient_location"),
            (MEDS, {"latitude": 0}, 10, "patient_location"),
            (MEDS, {"latitude": "12.9", "longitude": 77.5}, 10, "patient_location"),
            (MEDS, {"latitude": True, "longitude": 77.5}, 10, "patient_location"),
            (MEDS, {"latitude": float("nan"), "longitude": 77.5}, 10, "patient_location"),
            (MEDS, {"latitude": 95.0, "longitude": 77.5}, 10, "patient_location.latitude"),
            (MEDS, {"latitude": 12.9, "longitude": 181.0}, 10, "patient_location.longitude"),
            (MEDS, {"latitude": 12.9, "longitude": 77.5}, None, "max_distance_km"),
            (MEDS, {"latitude": 12.9, "longitude": 77.5}, 0, "max_distance_km"),
            (MEDS, {"latitude": 12.9, "longitude": 77.5}, -3, "max_distance_km"),
            (MEDS, {"latitude": 12.9, "longitude": 77.5}, float("inf"), "max_distance_km"),
        ],
    )
    def test_invalid(self, meds, location, radius, field):
        with pytest.raises(InputValidationError) as exc_info:
            validate_match_inputs(meds, location, radius)
        assert exc_info.value.field == field

    def test_duplicate_names_collapse(self):
        meds = [
            RequiredMedication("Paracetamol"),
            RequiredMedication("paracetamol!"),
            RequiredMedication("Ibuprofen"),
            RequiredMedication(""),
        ]
        assert normalize_required_names(meds) == ["paracetamol", "ibuprofen"]


# ---- Matching scenarios -----------------------------------------------------


class TestFindMatchingPharmacies:
    @pytest.fixture()
    def scenario(self, patient, make_pharmacy, stock, build_orchestrator):
        """P1 at 5 km stocks both, P2 at 900 km stocks one, P3 at 1200 km stocks both."""
        lat, lon = patient["latitude"], patient["longitude"]
        pharmacies = [
            make_pharmacy("P1", lat + 5 * KM, lon),
            make_pharmacy("P2", lat + 900 * KM, lon),
            make_pharmacy("P3", lat + 1200 * KM, lon),
        ]
        records = [
            stock("P1", "Amoxicillin 500mg"),
            stock("P1", "Paracetamol 650mg"),
            stock("P2", "Amoxicillin 500mg"),
            stock("P3", "Amoxicillin 500mg"),
            stock("P3", "Paracetamol 650mg"),
        ]
        return build_orchestrator(pharmacies, records)

    def test_only_complete_pharmacy_in_range(self, scenario, patient):
        report = scenario.find_matching_pharmacies(MEDS, patient, 1000)
        assert [r.pharmacy_id for r in report.results] == ["P1"]
        p1 = report.results[0]
        assert p1.distance_km == pytest.approx(5.0, abs=0.1)
        assert p1.missing_medications == []
        assert p1.score == 100.0
        assert {m.required for m in p1.available_medications} == {"amoxicillin", "paracetamol"}
        assert report.candidates_evaluated == 2
        assert not report.partial

    def test_result_fields(self, scenario, patient):
        p1 = scenario.find_matching_pharmacies(MEDS, patient, 1000).results[0]
        assert p1.estimated_fulfillment_time == "2-4 hours"
        assert 7 <= p1.estimated_travel_minutes <= 8  # ~5 km at 40 km/h
        assert p1.available_medications[0].source == "inventory"

    def test_two_of_three_excluded(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        orchestrator = build_orchestrator(
            [make_pharmacy("A", lat + 2 * KM, lon)],
            [stock("A", "Amoxicillin"), stock("A", "Paracetamol")],
        )
        meds = MEDS + [{"name": "Cetirizine"}]
        report = orchestrator.find_matching_pharmacies(meds, patient, 10)
        assert report.results == []
        assert report.candidates_evaluated == 1

    def test_sorted_by_distance_with_invariants(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        offsets = {"far": 9, "near": 1, "mid": 4, "out": 12}
        pharmacies = [make_pharmacy(pid, lat + km * KM, lon) for pid, km in offsets.items()]
        records = [stock(pid, name) for pid in offsets for name in ("Amoxicillin", "Paracetamol")]
        report = build_orchestrator(pharmacies, records).find_matching_pharmacies(MEDS, patient, 10)

        assert [r.pharmacy_id for r in report.results] == ["near", "mid", "far"]
        distances = [r.distance_km for r in report.results]
        assert distances == sorted(distances)
        for r in report.results:
            assert r.missing_medications == []
            assert r.qualifies
            assert r.distance_km <= 10

    def test_ties_keep_directory_order(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        ids = ["z", "a", "m"]
        pharmacies = [make_pharmacy(pid, lat + KM, lon) for pid in ids]
        records = [stock(pid, "Paracetamol") for pid in ids]
        report = build_orchestrator(pharmacies, records).find_matching_pharmacies(
            [{"name": "Paracetamol"}], patient, 5
        )
        assert [r.pharmacy_id for r in report.results] == ids

    def test_catalog_strategy_fills_gap(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        catalog = [
            CatalogEntry(
                id="med-amox",
                name="Amoxicillin 500mg Capsule",
                brand_name="Amoxil",
                embedded_inventory=(InventoryRecord("A", "Amoxil 500", 40, 8.5),),
            )
        ]
        orchestrator = build_orchestrator(
            [make_pharmacy("A", lat + KM, lon)], [stock("A", "Paracetamol 500mg")], catalog
        )
        result = orchestrator.find_matching_pharmacies(MEDS, patient, 5).results[0]
        sources = {m.required: m.source for m in result.available_medications}
        assert sources == {"amoxicillin": "catalog", "paracetamol": "inventory"}

    def test_duplicate_prescription_lines(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        orchestrator = build_orchestrator([make_pharmacy("A", lat, lon)], [stock("A", "Paracetamol")])
        report = orchestrator.find_matching_pharmacies(
            [{"name": "Paracetamol"}, {"name": "PARACETAMOL."}], patient, 5
        )
        assert len(report.results) == 1
        assert len(report.results[0].available_medications) == 1

    def test_no_candidates(self, patient, build_orchestrator):
        report = build_orchestrator([]).find_matching_pharmacies(MEDS, patient, 5)
        assert report.results == []
        assert report.candidates_evaluated == 0
        assert not report.partial

    def test_top_slice_keeps_full_results(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        pharmacies = [make_pharmacy(f"p{i}", lat + i * 0.1 * KM, lon) for i in range(15)]
        records = [stock(p.id, "Paracetamol") for p in pharmacies]
        report = build_orchestrator(pharmacies, records).find_matching_pharmacies(
            [{"name": "Paracetamol"}], patient, 5
        )
        assert len(report.results) == 15
        assert len(report.top(10)) == 10

    def test_validation_happens_before_directory(self, patient):
        directory = InMemoryPharmacyDirectory([])
        directory.find_eligible = pytest.fail  # must never be reached
        orchestrator = MatchingOrchestrator(
            directory,
            InventoryMatcherFactory(MatcherConfig(), InMemoryInventorySource([])),
        )
        with pytest.raises(InputValidationError):
            orchestrator.find_matching_pharmacies([], patient, 5)


# ---- Eligibility ------------------------------------------------------------


class TestEligibilityModes:
    @pytest.fixture()
    def orchestrator(self, patient, make_pharmacy, stock, build_orchestrator):
        lat, lon = patient["latitude"], patient["longitude"]
        pharmacies = [
            make_pharmacy("verified", lat + 2 * KM, lon),
            make_pharmacy("pending", lat + KM, lon, registration_status="pending", is_verified=False),
        ]
        records = [stock(p.id, "Paracetamol") for p in pharmacies]
        return build_orchestrator(pharmacies, records)

    def test_strict_by_default(self, orchestrator, patient):
        report = orchestrator.find_matching_pharmacies([{"name": "Paracetamol"}], patient, 5)
        assert [r.pharmacy_id for r in report.results] == ["verified"]

    def test_relaxed_is_explicit_and_logged(self, orchestrator, patient, caplog):
        with caplog.at_level(logging.WARNING, logger="rx_matching.orchestrator"):
            report = orchestrator.find_matching_pharmacies(
                [{"name": "Paracetamol"}], patient, 5, eligibility_mode="relaxed"
            )
        assert [r.pharmacy_id for r in report.results] == ["pending", "verified"]
        assert any("Relaxed eligibility" in rec.message for rec in caplog.records)

    def test_unknown_mode(self, orchestrator, patient):
        with pytest.raises(InputValidationError):
            orchestrator.find_matching_pharmacies(
                [{"name": "Paracetamol"}], patient, 5, eligibility_mode="anything"
            )

    def test_default_radius_from_config(self, patient, make_pharmacy, stock, build_orchestrator):
        cfg = MatcherConfig(default_max_distance_km=3.0, retry_min_wait=0.0, retry_max_wait=0.0)
        lat, lon = patient["latitude"], patient["longitude"]
        orchestrator = build_orchestrator(
            [make_pharmacy("in", lat + KM, lon), make_pharmacy("out", lat + 4 * KM, lon)],
            [stock("in", "Paracetamol"), stock("out", "Paracetamol")],
            cfg=cfg,
        )
        report = orchestrator.find_matching_pharmacies([{"name": "Paracetamol"}], patient)
        assert [r.pharmacy_id for r in report.results] == ["in"]


# ---- Failure isolation ------------------------------------------------------


class TestFailureIsolation:
    @pytest.fixture()
    def pharmacies(self, patient, make_pharmacy):
        lat, lon = patient["latitude"], patient["longitude"]
        return [make_pharmacy(pid, lat + (i + 1) * KM, lon) for i, pid in enumerate("ABC")]

    @pytest.fixture()
    def inventory(self, pharmacies, stock):
        return InMemoryInventorySource(
            [stock(p.id, name) for p in pharmacies for name in ("Amoxicillin", "Paracetamol")]
        )

    def _orchestrator(self, pharmacies, inventory, config):
        factory = InventoryMatcherFactory(config, inventory, InMemoryCatalogSource([]))
        return MatchingOrchestrator(InMemoryPharmacyDirectory(pharmacies), factory, config)

    def test_unexpected_error_drops_only_that_pharmacy(self, pharmacies, inventory, config, patient):
        broken = ExplodingInventory(inventory, {"B"}, RuntimeError("corrupt row"))
        report = self._orchestrator(pharmacies, broken, config).find_matching_pharmacies(
            MEDS, patient, 10
        )
        assert [r.pharmacy_id for r in report.results] == ["A", "C"]
        assert report.candidates_failed == 1
        assert report.partial
        assert [w.reason for w in report.warnings] == ["candidate_errors"]

    def test_upstream_outage_is_degraded_not_fatal(self, pharmacies, inventory, config, patient):
        broken = ExplodingInventory(inventory, {"A"}, UpstreamQueryError("timeout", source="inventory"))
        report = self._orchestrator(pharmacies, broken, config).find_matching_pharmacies(
            MEDS, patient, 10
        )
        assert [r.pharmacy_id for r in report.results] == ["B", "C"]
        assert report.candidates_failed == 0
        assert report.partial
        assert report.warnings[0].reason == "upstream_degraded"

    def test_directory_outage(self, inventory, config, patient):
        class DownDirectory:
            def find_eligible(self, criteria):
                raise ConnectionError("refused")

        factory = InventoryMatcherFactory(config, inventory, InMemoryCatalogSource([]))
        report = MatchingOrchestrator(DownDirectory(), factory, config).find_matching_pharmacies(
            MEDS, patient, 10
        )
        assert report.results == []
        assert report.partial
        assert report.warnings[0].reason == "upstream_degraded"

    def test_evaluate_candidate_reports_missing(self, pharmacies, inventory, config):
        orchestrator = self._orchestrator(pharmacies, inventory, config)
        result, degraded = orchestrator.evaluate_candidate(
            Candidate(pharmacies[0], 1.04), ["amoxicillin", "insulin"]
        )
        assert not result.qualifies
        assert result.missing_medications == ["insulin"]
        assert result.score == 50.0
        assert result.distance_km == 1.0
        assert not degraded


# ---- Deadline and cancellation ----------------------------------------------


class TestDeadlineAndCancellation:
    @pytest.fixture()
    def pharmacies(self, patient, make_pharmacy):
        lat, lon = patient["latitude"], patient["longitude"]
        return [make_pharmacy("fast", lat + KM, lon), make_pharmacy("slow", lat + 2 * KM, lon)]

    @pytest.fixture()
    def blocking(self, pharmacies, stock):
        inner = InMemoryInventorySource([stock(p.id, "Paracetamol") for p in pharmacies])
        source = BlockingInventory(inner, {"slow"})
        yield source
        source.release.set()

    def test_timeout_returns_partial(self, pharmacies, blocking, config, patient):
        factory = InventoryMatcherFactory(config, blocking, InMemoryCatalogSource([]))
        orchestrator = MatchingOrchestrator(InMemoryPharmacyDirectory(pharmacies), factory, config)
        report = orchestrator.find_matching_pharmacies(
            [{"name": "Paracetamol"}], patient, 5, timeout=0.5
        )
        assert [r.pharmacy_id for r in report.results] == ["fast"]
        assert report.partial
        assert report.warnings[0].reason == "timeout"
        assert report.warnings[0].skipped == 1

    def test_cancel_before_start(self, pharmacies, blocking, config, patient):
        directory = CountingDirectory(pharmacies)
        factory = InventoryMatcherFactory(config, blocking, InMemoryCatalogSource([]))
        orchestrator = MatchingOrchestrator(directory, factory, config)
        cancel = threading.Event()
        cancel.set()
        report = orchestrator.find_matching_pharmacies(
            [{"name": "Paracetamol"}], patient, 5, cancel_event=cancel
        )
        assert report.results == []
        assert report.partial
        assert report.candidates_evaluated == 0
        assert report.warnings[0].reason == "cancelled"
        assert directory.calls == 0

    def test_cancel_during_fan_out(self, pharmacies, blocking, config, patient):
        factory = InventoryMatcherFactory(config, blocking, InMemoryCatalogSource([]))
        orchestrator = MatchingOrchestrator(InMemoryPharmacyDirectory(pharmacies), factory, config)
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            report = orchestrator.find_matching_pharmacies(
                [{"name": "Paracetamol"}], patient, 5, timeout=5, cancel_event=cancel
            )
        finally:
            timer.cancel()
        assert [r.pharmacy_id for r in report.results] == ["fast"]
        assert report.warnings[0].reason == "cancelled"
        assert report.warnings[0].skipped == 1

    def test_slow_directory_bounded_by_timeout(self, pharmacies, stock, config, patient):
        directory = StalledDirectory()
        inventory = InMemoryInventorySource([stock(p.id, "Paracetamol") for p in pharmacies])
        factory = InventoryMatcherFactory(config, inventory, InMemoryCatalogSource([]))
        orchestrator = MatchingOrchestrator(directory, factory, config)
        try:
            started = time.monotonic()
            report = orchestrator.find_matching_pharmacies(
                [{"name": "Paracetamol"}], patient, 5, timeout=0.3
            )
            elapsed = time.monotonic() - started
        finally:
            directory.release.set()
        assert elapsed < 1.5
        assert report.results == []
        assert report.partial
        assert report.candidates_evaluated == 0
        assert [w.reason for w in report.warnings] == ["timeout"]
