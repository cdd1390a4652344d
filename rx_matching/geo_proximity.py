#!/usr/bin/env python3
"""
Prescription Matching — Geospatial Distance

Great-circle distance between a patient and a pharmacy using the Haversine
formula, plus a bounding-box helper for cheap pre-filtering and a rough
travel-time estimate for display.

No external geo-libraries required — pure math with stdlib.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM = 6371.0

# Average speeds (km/h) used for travel-time estimates
TRAVEL_SPEEDS_KMH: dict[str, float] = {
    "walking": 5.0,
    "cycling": 15.0,
    "driving": 40.0,    # city traffic
    "delivery": 30.0,
}


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 coordinate pair."""
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        """Check whether coordinates fall within the WGS84 ranges."""
        return (
            -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )


# ---------------------------------------------------------------------------
# Core distance calculation
# ---------------------------------------------------------------------------


def haversine_km(coord_a: Coordinate, coord_b: Coordinate) -> float:
    """
    Compute the great-circle distance in kilometres between two WGS84 points
    using the Haversine formula.
    """
    lat1 = math.radians(coord_a.latitude)
    lat2 = math.radians(coord_b.latitude)
    dlat = math.radians(coord_b.latitude - coord_a.latitude)
    dlon = math.radians(coord_b.longitude - coord_a.longitude)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two raw lat/lon pairs."""
    return haversine_km(Coordinate(lat1, lon1), Coordinate(lat2, lon2))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def bounding_box_filter(
    target: Coordinate,
    radius_km: float,
) -> tuple[float, float, float, float]:
    """
    Return a lat/lon bounding box that encloses a circle of the given radius
    around the target coordinate.

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees, clamped to the
    valid WGS84 ranges. When the circle reaches a pole or wraps across the
    antimeridian the longitude range widens to the full [-180, 180].

    Useful for pre-filtering pharmacy rows with a simple SQL WHERE clause
    before running the exact Haversine check.
    """
    lat_delta = radius_km / EARTH_RADIUS_KM * (180.0 / math.pi)
    min_lat = target.latitude - lat_delta
    max_lat = target.latitude + lat_delta

    if min_lat <= -90.0 or max_lat >= 90.0:
        return (max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)

    lon_delta = lat_delta / math.cos(math.radians(target.latitude))
    min_lon = target.longitude - lon_delta
    max_lon = target.longitude + lon_delta

    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return (min_lat, max_lat, min_lon, max_lon)


def estimated_travel_minutes(distance: float, mode: str = "driving") -> int:
    """
    Rough travel time in whole minutes for a given distance.

    Unknown modes fall back to driving speed.
    """
    speed = TRAVEL_SPEEDS_KMH.get(mode, TRAVEL_SPEEDS_KMH["driving"])
    return round(distance / speed * 60)
