"""Availability score and qualification decision for one pharmacy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .errors import InputValidationError
from .models import MatchOutcome


@dataclass(frozen=True)
class ScoreResult:
    score: float       # 0–100, percentage of required medications available
    qualifies: bool    # every required medication available


def score_availability(
    required: Sequence[str],
    available: Sequence[MatchOutcome],
) -> ScoreResult:
    """
    Score a pharmacy by how much of the prescription it can supply.

    score     = 100 * |available| / |required|, rounded to 1 decimal
    qualifies = |available| == |required| and |available| > 0
    """
    if not required:
        raise InputValidationError("Cannot score against an empty prescription", "medications")

    score = round(100.0 * len(available) / len(required), 1)
    qualifies = len(available) == len(required) and len(available) > 0
    return ScoreResult(score=score, qualifies=qualifies)
