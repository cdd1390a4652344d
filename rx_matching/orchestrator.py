#!/usr/bin/env python3
"""
Prescription Matching — Orchestrator

Runs one matching call end to end:

    1. Validate inputs
    2. Normalize and de-duplicate the required medicine names
    3. Pull eligible pharmacies from the directory and filter by distance
    4. Evaluate every candidate on a bounded worker pool
    5. Keep qualifying pharmacies, sorted by distance

Per-candidate failures never abort the batch.  A deadline or a caller
cancellation returns what has been collected so far, flagged as partial.
"""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Iterable, Sequence

from .candidate_filter import Candidate, filter_candidates
from .config import MatcherConfig
from .errors import (
    InputValidationError,
    PartialResultsWarning,
    PerCandidateProcessingError,
    UpstreamQueryError,
)
from .geo_proximity import bounding_box_filter, estimated_travel_minutes
from .inventory_matcher import InventoryMatcherFactory
from .models import (
    EligibilityMode,
    MatchOutcome,
    MatchReport,
    MatchResult,
    PatientLocation,
    RequiredMedication,
)
from .name_similarity import normalize_medicine_name
from .scorer import score_availability
from .sources import DirectoryCriteria, PharmacyDirectory, call_upstream

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05  # seconds between cancellation checks while waiting

_OK = "ok"
_DEGRADED = "degraded"
_FAILED = "failed"
_SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _coerce_location(raw: Any) -> PatientLocation:
    if raw is None:
        raise InputValidationError("Patient location is required", "patient_location")
    if isinstance(raw, PatientLocation):
        lat, lon = raw.latitude, raw.longitude
    elif isinstance(raw, dict):
        lat, lon = raw.get("latitude"), raw.get("longitude")
    else:
        raise InputValidationError("Patient location must have latitude and longitude", "patient_location")

    if not _is_number(lat) or not _is_number(lon):
        raise InputValidationError("Latitude and longitude must be numbers", "patient_location")
    if not -90.0 <= lat <= 90.0:
        raise InputValidationError(f"Latitude {lat} outside [-90, 90]", "patient_location.latitude")
    if not -180.0 <= lon <= 180.0:
        raise InputValidationError(f"Longitude {lon} outside [-180, 180]", "patient_location.longitude")
    return PatientLocation(float(lat), float(lon))


def normalize_required_names(medications: Iterable[RequiredMedication]) -> list[str]:
    """Normalized names in prescription order, empties dropped, duplicates removed."""
    seen: set[str] = set()
    names: list[str] = []
    for med in medications:
        norm = normalize_medicine_name(med.name)
        if norm and norm not in seen:
            seen.add(norm)
            names.append(norm)
    return names


def validate_match_inputs(
    required_medications: Sequence[RequiredMedication | dict],
    patient_location: PatientLocation | dict | None,
    max_distance_km: float | None,
) -> tuple[list[str], PatientLocation, float]:
    """
    Check caller inputs before any candidate is touched.

    Returns (normalized required names, patient location, radius).
    Raises InputValidationError on the first problem found.
    """
    if not required_medications:
        raise InputValidationError("At least one medication is required", "medications")

    meds = [
        m if isinstance(m, RequiredMedication) else RequiredMedication.from_dict(m)
        for m in required_medications
    ]
    names = normalize_required_names(meds)
    if not names:
        raise InputValidationError("No medication has a usable name", "medications")

    location = _coerce_location(patient_location)

    if max_distance_km is None:
        raise InputValidationError("max_distance_km is required", "max_distance_km")
    if not _is_number(max_distance_km) or max_distance_km <= 0:
        raise InputValidationError("max_distance_km must be a positive number", "max_distance_km")

    return names, location, float(max_distance_km)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MatchingOrchestrator:
    """Coordinates directory lookup, filtering, inventory matching and scoring."""

    def __init__(
        self,
        directory: PharmacyDirectory,
        matcher_factory: InventoryMatcherFactory,
        config: MatcherConfig | None = None,
    ):
        self.directory = directory
        self.matcher_factory = matcher_factory
        self.config = config or matcher_factory.config

    # -- single candidate ---------------------------------------------------

    def evaluate_candidate(
        self,
        candidate: Candidate,
        required: Sequence[str],
    ) -> tuple[MatchResult, bool]:
        """
        Resolve every required name at one pharmacy.

        Returns the result (qualifying or not) and whether any lookup was
        degraded by an upstream failure.
        """
        pharmacy = candidate.pharmacy
        matcher = self.matcher_factory()

        available: list[MatchOutcome] = []
        missing: list[str] = []
        for name in required:
            outcome = matcher.match(name, pharmacy.id)
            if outcome is None:
                missing.append(name)
            else:
                available.append(outcome)

        scored = score_availability(required, available)
        result = MatchResult(
            pharmacy_id=pharmacy.id,
            pharmacy_name=pharmacy.name,
            address=pharmacy.address,
            phone=pharmacy.phone,
            email=pharmacy.email,
            distance_km=round(candidate.distance_km, 1),
            available_medications=available,
            missing_medications=missing,
            score=scored.score,
            qualifies=scored.qualifies,
            estimated_fulfillment_time=self.config.fulfillment_estimate,
            estimated_travel_minutes=estimated_travel_minutes(
                candidate.distance_km, self.config.travel_mode
            ),
        )
        if not scored.qualifies:
            logger.debug(
                "Pharmacy %s rejected: %d/%d available, missing %s",
                pharmacy.id, len(available), len(required), missing,
                extra={"pharmacy_id": pharmacy.id, "exclusion": "missing_medications"},
            )
        return result, matcher.degraded

    # -- batch --------------------------------------------------------------

    def find_matching_pharmacies(
        self,
        required_medications: Sequence[RequiredMedication | dict],
        patient_location: PatientLocation | dict,
        max_distance_km: float | None = None,
        *,
        eligibility_mode: EligibilityMode | str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> MatchReport:
        """
        Find every pharmacy within max_distance_km that stocks all required
        medications, sorted by distance ascending.

        Parameters
        ----------
        required_medications : list of RequiredMedication or dict
            Prescription items; only the name takes part in matching.
        patient_location : PatientLocation or {"latitude", "longitude"}
        max_distance_km : float
            Search radius. Falls back to config.default_max_distance_km,
            and is required if that is unset.
        eligibility_mode : EligibilityMode, optional
            Overrides config.eligibility_mode for this call.
        timeout : float, optional
            Seconds before returning partial results, counted from the start
            of the call so the directory lookup is included. Defaults to
            config.timeout_seconds.
        cancel_event : threading.Event, optional
            Set by the caller to stop early.  Checked before the directory
            lookup and throughout the fan-out.

        Raises
        ------
        InputValidationError
            Before any candidate work, when inputs are unusable.
        """
        started = time.monotonic()
        if max_distance_km is None:
            max_distance_km = self.config.default_max_distance_km
        required, location, radius = validate_match_inputs(
            required_medications, patient_location, max_distance_km
        )
        try:
            mode = EligibilityMode(eligibility_mode or self.config.eligibility_mode)
        except ValueError:
            raise InputValidationError(
                f"Unknown eligibility mode {eligibility_mode!r}", "eligibility_mode"
            ) from None
        if mode is EligibilityMode.RELAXED:
            logger.warning("Relaxed eligibility requested: unverified pharmacies are included")

        budget = self.config.timeout_seconds if timeout is None else timeout
        deadline = started + budget
        cancel_event = cancel_event or threading.Event()

        report = MatchReport(results=[])

        # -- directory ------------------------------------------------------
        criteria = DirectoryCriteria(
            eligibility_mode=mode,
            bounding_box=bounding_box_filter(location.as_coordinate(), radius),
        )
        try:
            pharmacies, directory_stop = self._load_directory(criteria, deadline, cancel_event)
        except UpstreamQueryError as e:
            logger.error("Pharmacy directory unavailable: %s", e)
            report.partial = True
            report.warnings.append(
                PartialResultsWarning("upstream_degraded", f"Pharmacy directory unavailable: {e}")
            )
            pharmacies, directory_stop = [], None

        if directory_stop is not None:
            logger.warning("Pharmacy directory lookup %s; no candidates evaluated", directory_stop)
            report.warnings.append(
                PartialResultsWarning(
                    directory_stop, f"Pharmacy directory lookup {directory_stop}"
                )
            )

        candidates = filter_candidates(pharmacies, location, radius, mode)
        report.candidates_evaluated = len(candidates)

        # -- fan-out --------------------------------------------------------
        if candidates:
            collected, stop_reason = self._evaluate_all(candidates, required, deadline, cancel_event)
        else:
            collected, stop_reason = [], None

        degraded = 0
        qualifying: list[tuple[int, MatchResult]] = []
        for index, result, status in collected:
            if status == _FAILED:
                report.candidates_failed += 1
            elif status == _DEGRADED:
                degraded += 1
            if result is not None and result.qualifies:
                if result.distance_km > radius:
                    result.distance_km = radius
                qualifying.append((index, result))

        finished = sum(1 for _, _, status in collected if status != _SKIPPED)
        skipped = len(candidates) - finished
        if stop_reason is not None:
            report.warnings.append(
                PartialResultsWarning(
                    stop_reason,
                    f"Stopped after {finished} of {len(candidates)} candidates",
                    skipped=skipped,
                )
            )
        if degraded:
            report.warnings.append(
                PartialResultsWarning(
                    "upstream_degraded",
                    f"{degraded} candidates evaluated with an unavailable inventory source",
                    skipped=degraded,
                )
            )
        if report.candidates_failed:
            report.warnings.append(
                PartialResultsWarning(
                    "candidate_errors",
                    f"{report.candidates_failed} candidates failed and were excluded",
                    skipped=report.candidates_failed,
                )
            )
        report.partial = report.partial or bool(report.warnings)

        # Stable: ties keep filter order
        qualifying.sort(key=lambda pair: (pair[1].distance_km, pair[0]))
        report.results = [r for _, r in qualifying]
        report.elapsed_ms = round((time.monotonic() - started) * 1000, 1)

        logger.info(
            "Matched %d required medicines: %d qualifying of %d candidates (%d failed) in %.1f ms%s",
            len(required), len(report.results), len(candidates), report.candidates_failed,
            report.elapsed_ms, " [partial]" if report.partial else "",
            extra={
                "required_count": len(required),
                "candidates": len(candidates),
                "qualifying": len(report.results),
                "failed": report.candidates_failed,
                "elapsed_ms": report.elapsed_ms,
                "partial": report.partial,
            },
        )
        return report

    def _load_directory(
        self,
        criteria: DirectoryCriteria,
        deadline: float,
        cancel_event: threading.Event,
    ) -> tuple[list, str | None]:
        """
        Directory query bounded by the call's deadline.

        Returns (pharmacies, stop reason).  On timeout or cancellation the
        query thread is abandoned and no pharmacies are returned.
        """
        if cancel_event.is_set():
            return [], "cancelled"

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rx-directory")
        try:
            future = executor.submit(
                call_upstream,
                self.directory.find_eligible,
                criteria,
                config=self.config,
                what="directory",
            )
            while not future.done():
                if cancel_event.is_set():
                    return [], "cancelled"
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return [], "timeout"
                wait([future], timeout=min(remaining, _POLL_INTERVAL))
            return future.result(), None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _evaluate_all(
        self,
        candidates: list[Candidate],
        required: list[str],
        deadline: float,
        cancel_event: threading.Event,
    ) -> tuple[list[tuple[int, MatchResult | None, str]], str | None]:
        """Evaluate candidates concurrently; returns collected items and stop reason."""
        collector: queue.Queue = queue.Queue()
        stop = threading.Event()

        def worker(index: int, candidate: Candidate) -> None:
            if stop.is_set() or cancel_event.is_set():
                collector.put((index, None, _SKIPPED))
                return
            pharmacy_id = candidate.pharmacy.id
            try:
                result, degraded = self.evaluate_candidate(candidate, required)
            except Exception as e:
                err = PerCandidateProcessingError(pharmacy_id, e)
                logger.error("%s", err, exc_info=e, extra={"pharmacy_id": pharmacy_id})
                collector.put((index, None, _FAILED))
                return
            collector.put((index, result, _DEGRADED if degraded else _OK))

        stop_reason: str | None = None
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.max_workers, len(candidates)),
            thread_name_prefix="rx-match",
        )
        try:
            pending = {executor.submit(worker, i, c) for i, c in enumerate(candidates)}
            while pending:
                if cancel_event.is_set():
                    stop_reason = "cancelled"
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    stop_reason = "timeout"
                    break
                _, pending = wait(
                    pending,
                    timeout=min(remaining, _POLL_INTERVAL),
                    return_when=FIRST_COMPLETED,
                )
        finally:
            stop.set()
            executor.shutdown(wait=False, cancel_futures=True)

        if stop_reason is not None:
            logger.warning("Candidate evaluation %s; returning partial results", stop_reason)

        collected = []
        while True:
            try:
                collected.append(collector.get_nowait())
            except queue.Empty:
                break
        return collected, stop_reason
