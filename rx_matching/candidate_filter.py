"""Select pharmacies that are eligible and within the patient's travel radius."""

from __future__ import annotations

import logging
from typing import Iterable, NamedTuple

from .geo_proximity import haversine_km
from .models import EligibilityMode, PatientLocation, Pharmacy

logger = logging.getLogger(__name__)


class Candidate(NamedTuple):
    pharmacy: Pharmacy
    distance_km: float


def filter_candidates(
    pharmacies: Iterable[Pharmacy],
    patient_location: PatientLocation,
    max_distance_km: float,
    eligibility_mode: EligibilityMode = EligibilityMode.STRICT,
) -> list[Candidate]:
    """
    Keep pharmacies that have a location, lie within max_distance_km of the
    patient and satisfy the eligibility mode.

    Output follows input order; callers sort.
    """
    origin = patient_location.as_coordinate()
    candidates: list[Candidate] = []
    dropped = {"no_location": 0, "too_far": 0, "ineligible": 0}

    for pharmacy in pharmacies:
        if pharmacy.location is None:
            dropped["no_location"] += 1
            logger.debug("Pharmacy %s skipped: no location", pharmacy.id,
                         extra={"pharmacy_id": pharmacy.id, "exclusion": "no_location"})
            continue

        dist = haversine_km(origin, pharmacy.location)
        if dist > max_distance_km:
            dropped["too_far"] += 1
            logger.debug("Pharmacy %s skipped: %.1f km > %.1f km", pharmacy.id, dist, max_distance_km,
                         extra={"pharmacy_id": pharmacy.id, "exclusion": "too_far"})
            continue

        if not pharmacy.is_eligible(eligibility_mode):
            dropped["ineligible"] += 1
            logger.debug("Pharmacy %s skipped: not eligible under %s mode",
                         pharmacy.id, eligibility_mode.value,
                         extra={"pharmacy_id": pharmacy.id, "exclusion": "ineligible"})
            continue

        candidates.append(Candidate(pharmacy, dist))

    logger.info(
        "Candidate filter: %d kept, %d without location, %d beyond %.1f km, %d ineligible",
        len(candidates), dropped["no_location"], dropped["too_far"], max_distance_km,
        dropped["ineligible"],
    )
    return candidates
