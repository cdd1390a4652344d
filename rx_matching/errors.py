"""Exceptions and non-fatal warnings raised or reported by the matching engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class MatchingError(Exception):
    """Base class for matching engine errors."""


class InputValidationError(MatchingError, ValueError):
    """Caller input is unusable; raised before any candidate is processed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class UpstreamQueryError(MatchingError):
    """A directory, inventory or catalog query kept failing after retries."""

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class PerCandidateProcessingError(MatchingError):
    """Evaluating one pharmacy failed; the pharmacy is dropped from the batch."""

    def __init__(self, pharmacy_id: str, cause: BaseException):
        super().__init__(f"Failed to evaluate pharmacy {pharmacy_id}: {cause}")
        self.pharmacy_id = pharmacy_id
        self.cause = cause


@dataclass
class PartialResultsWarning:
    """
    Returned alongside results (never raised) when some candidates were
    skipped or degraded.

    reason is one of: "timeout", "cancelled", "upstream_degraded",
    "candidate_errors".
    """

    reason: str
    detail: str
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"reason": self.reason, "detail": self.detail, "skipped": self.skipped}
