"""Prescription matching endpoints."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from fastapi import APIRouter

from rx_matching.models import MatchReport, RequiredMedication
from rx_matching.prescription import build_target_pharmacies, extract_required_medications

from ..helpers import build_orchestrator
from ..models import MatchRequest, ParsedPrescriptionMatchRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _report_response(report: MatchReport, display_limit: int) -> dict[str, Any]:
    shown = report.top(display_limit)
    return {
        "meta": {
            "total": len(report.results),
            "returned": len(shown),
            "partial": report.partial,
            "candidates_evaluated": report.candidates_evaluated,
            "candidates_failed": report.candidates_failed,
            "elapsed_ms": report.elapsed_ms,
        },
        "warnings": [w.to_dict() for w in report.warnings],
        "data": [r.to_dict() for r in shown],
        "target_pharmacies": build_target_pharmacies(report.results),
    }


def _run_match(
    medications: Sequence[RequiredMedication],
    body: MatchRequest | ParsedPrescriptionMatchRequest,
) -> dict[str, Any]:
    orchestrator = build_orchestrator()
    report = orchestrator.find_matching_pharmacies(
        medications,
        {
            "latitude": body.patient_location.latitude,
            "longitude": body.patient_location.longitude,
        },
        body.max_distance_km,
        eligibility_mode=body.eligibility_mode,
    )
    return _report_response(report, body.display_limit)


# Plain def: matching blocks on the worker pool, so FastAPI runs it in its threadpool.
@router.post("/api/prescriptions/match")
def match_prescription(body: MatchRequest) -> dict[str, Any]:
    """Pharmacies within range that stock every requested medication, nearest first."""
    medications = [RequiredMedication.from_dict(m.model_dump()) for m in body.medications]
    return _run_match(medications, body)


@router.post("/api/prescriptions/match-parsed")
def match_parsed_prescription(body: ParsedPrescriptionMatchRequest) -> dict[str, Any]:
    """Same as /match, reading medications out of a parsed prescription payload."""
    medications = extract_required_medications(body.prescription)
    return _run_match(medications, body)
