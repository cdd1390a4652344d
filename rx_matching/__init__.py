"""Prescription-to-pharmacy matching engine."""

from .name_similarity import (
    normalize_medicine_name,
    get_name_matcher,
    SubstringNameMatcher,
    TokenSetNameMatcher,
)
from .geo_proximity import (
    Coordinate,
    distance_km,
    haversine_km,
    estimated_travel_minutes,
)
from .errors import (
    InputValidationError,
    MatchingError,
    PartialResultsWarning,
    PerCandidateProcessingError,
    UpstreamQueryError,
)
from .models import (
    CatalogEntry,
    EligibilityMode,
    InventoryRecord,
    MatchOutcome,
    MatchReport,
    MatchResult,
    PatientLocation,
    Pharmacy,
    RequiredMedication,
)
from .config import MatcherConfig, load_config
from .candidate_filter import filter_candidates
from .scorer import score_availability
from .inventory_matcher import InventoryMatcher, InventoryMatcherFactory
from .orchestrator import MatchingOrchestrator, validate_match_inputs

__all__ = [
    "normalize_medicine_name",
    "get_name_matcher",
    "SubstringNameMatcher",
    "TokenSetNameMatcher",
    "Coordinate",
    "distance_km",
    "haversine_km",
    "estimated_travel_minutes",
    "InputValidationError",
    "MatchingError",
    "PartialResultsWarning",
    "PerCandidateProcessingError",
    "UpstreamQueryError",
    "CatalogEntry",
    "EligibilityMode",
    "InventoryRecord",
    "MatchOutcome",
    "MatchReport",
    "MatchResult",
    "PatientLocation",
    "Pharmacy",
    "RequiredMedication",
    "MatcherConfig",
    "load_config",
    "filter_candidates",
    "score_availability",
    "InventoryMatcher",
    "InventoryMatcherFactory",
    "MatchingOrchestrator",
    "validate_match_inputs",
]
