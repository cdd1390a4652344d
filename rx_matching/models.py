"""
Prescription Matching — Data Model

Read-only inputs and outputs of a single matching call.  Loose payload
shapes (the API body, JSON fixture files, database rows) are converted
with the ``from_dict`` constructors so the engine only ever sees typed
values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import PartialResultsWarning
from .geo_proximity import Coordinate


USABLE_STOCK_STATUSES = frozenset({"available", "low-stock"})


class EligibilityMode(str, Enum):
    """Which pharmacies may be considered at all."""

    STRICT = "strict"      # registration approved AND verified
    RELAXED = "relaxed"    # any pharmacy not explicitly deactivated


# ---------------------------------------------------------------------------
# Quantity: tagged variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalarQuantity:
    value: int


@dataclass(frozen=True)
class StructuredQuantity:
    prescribed: int | None
    unit: str | None = None


Quantity = Union[ScalarQuantity, StructuredQuantity]

_DIGITS = re.compile(r"(\d+)")


def _parse_count(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        m = _DIGITS.search(raw)
        return int(m.group(1)) if m else None
    return None


def parse_quantity(raw: Any) -> Quantity | None:
    """
    Convert a loosely typed quantity into the tagged variant.

    Examples:
        30                                   → ScalarQuantity(30)
        "30 tablets"                         → ScalarQuantity(30)
        {"prescribed": "14", "unit": "caps"} → StructuredQuantity(14, "caps")
        "as needed" / None                   → None
    """
    if raw is None:
        return None
    if isinstance(raw, dict):
        prescribed = _parse_count(raw.get("prescribed"))
        unit = raw.get("unit")
        if prescribed is None and unit is None:
            return None
        return StructuredQuantity(prescribed=prescribed, unit=unit)
    count = _parse_count(raw)
    return ScalarQuantity(count) if count is not None else None


def quantity_amount(quantity: Quantity | None) -> int | None:
    """Number of units asked for, whatever the quantity variant."""
    if quantity is None:
        return None
    if isinstance(quantity, ScalarQuantity):
        return quantity.value
    if isinstance(quantity, StructuredQuantity):
        return quantity.prescribed
    raise TypeError(f"Unsupported quantity variant: {type(quantity).__name__}")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequiredMedication:
    name: str
    quantity: Quantity | None = None
    dosage: str | None = None
    unit: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RequiredMedication":
        quantity = parse_quantity(raw.get("quantity"))
        unit = raw.get("unit")
        if unit is None and isinstance(quantity, StructuredQuantity):
            unit = quantity.unit
        return cls(
            name=raw.get("name") or "",
            quantity=quantity,
            dosage=raw.get("dosage"),
            unit=unit,
        )


@dataclass(frozen=True)
class PatientLocation:
    latitude: float
    longitude: float

    def as_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


def _parse_location(raw: dict[str, Any]) -> Coordinate | None:
    """Accept flat lat/lon keys, a {lat, long} dict, or a GeoJSON Point."""
    if raw.get("latitude") is not None and raw.get("longitude") is not None:
        return Coordinate(float(raw["latitude"]), float(raw["longitude"]))

    loc = raw.get("location")
    if not isinstance(loc, dict):
        return None

    coords = loc.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        # GeoJSON order is [longitude, latitude]
        return Coordinate(float(coords[1]), float(coords[0]))

    lat = loc.get("lat", loc.get("latitude"))
    lon = loc.get("long", loc.get("lng", loc.get("longitude")))
    if lat is None or lon is None:
        return None
    return Coordinate(float(lat), float(lon))


def _format_address(raw: Any) -> str:
    if isinstance(raw, dict):
        parts = [raw.get("street"), raw.get("city"), raw.get("state")]
        return ", ".join(p for p in parts if p)
    return raw or ""


def _record_id(raw: dict[str, Any], keys: tuple[str, ...], kind: str) -> str:
    """First id-like key that is present; a record without one is rejected."""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return str(value)
    raise ValueError(f"{kind} record has no id (looked for {', '.join(keys)})")


@dataclass(frozen=True)
class Pharmacy:
    id: str
    name: str
    address: str = ""
    location: Coordinate | None = None
    registration_status: str = "pending"
    is_verified: bool = False
    is_active: bool = True
    phone: str | None = None
    email: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Pharmacy":
        contact = raw.get("contact") or {}
        return cls(
            id=_record_id(raw, ("id", "pharmacy_id", "_id"), "Pharmacy"),
            name=raw.get("name") or "",
            address=_format_address(raw.get("address")),
            location=_parse_location(raw),
            registration_status=raw.get("registration_status")
            or raw.get("registrationStatus")
            or "pending",
            is_verified=bool(raw.get("is_verified", raw.get("isVerified", False))),
            is_active=raw.get("is_active", raw.get("isActive", True)) is not False,
            phone=raw.get("phone") or contact.get("phone"),
            email=raw.get("email") or contact.get("email"),
        )

    def is_eligible(self, mode: EligibilityMode) -> bool:
        if mode is EligibilityMode.RELAXED:
            return self.is_active
        return self.registration_status == "approved" and self.is_verified


@dataclass(frozen=True)
class InventoryRecord:
    pharmacy_id: str
    medicine_name: str
    quantity_available: int = 0
    price_per_unit: float | None = None
    status: str = "available"
    item_id: str | None = None

    @property
    def is_usable(self) -> bool:
        return self.quantity_available > 0 and self.status in USABLE_STOCK_STATUSES

    @classmethod
    def from_dict(cls, raw: dict[str, Any], pharmacy_id: str | None = None) -> "InventoryRecord":
        return cls(
            pharmacy_id=str(pharmacy_id or raw.get("pharmacy_id") or raw.get("pharmacyId")),
            medicine_name=raw.get("medicine_name") or raw.get("medicineName") or "",
            quantity_available=int(raw.get("quantity_available", raw.get("quantityAvailable", 0)) or 0),
            price_per_unit=raw.get("price_per_unit", raw.get("pricePerUnit", raw.get("sellingPrice"))),
            status=raw.get("status") or "available",
            item_id=raw.get("item_id") or raw.get("id"),
        )


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    brand_name: str | None = None
    generic_name: str | None = None
    alternative_names: tuple[str, ...] = ()
    search_tags: tuple[str, ...] = ()
    active_ingredients: tuple[str, ...] = ()
    status: str = "active"
    verification_status: str = "verified"
    embedded_inventory: tuple[InventoryRecord, ...] = ()

    @property
    def is_listed(self) -> bool:
        return self.status == "active" and self.verification_status == "verified"

    def searchable_names(self) -> list[str]:
        names = [self.name, self.brand_name, self.generic_name]
        names.extend(self.alternative_names)
        names.extend(self.search_tags)
        names.extend(self.active_ingredients)
        return [n for n in names if n]

    def stock_for(self, pharmacy_id: str) -> InventoryRecord | None:
        """First usable embedded stock record for the pharmacy."""
        for rec in self.embedded_inventory:
            if rec.pharmacy_id == pharmacy_id and rec.is_usable:
                return rec
        return None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CatalogEntry":
        composition = raw.get("composition") or []
        if isinstance(composition, dict):
            composition = [composition]
        ingredients = tuple(
            c["activeIngredient"] for c in composition
            if isinstance(c, dict) and c.get("activeIngredient")
        )
        inventory = raw.get("embedded_inventory", raw.get("pharmacyInventory")) or []
        return cls(
            id=_record_id(raw, ("id", "_id", "name"), "Catalog"),
            name=raw.get("name") or "",
            brand_name=raw.get("brand_name", raw.get("brandName")),
            generic_name=raw.get("generic_name", raw.get("genericName")),
            alternative_names=tuple(raw.get("alternative_names", raw.get("alternativeNames")) or ()),
            search_tags=tuple(raw.get("search_tags", raw.get("searchTags")) or ()),
            active_ingredients=ingredients,
            status=raw.get("status") or "active",
            verification_status=raw.get("verification_status")
            or raw.get("verificationStatus")
            or "verified",
            embedded_inventory=tuple(InventoryRecord.from_dict(r) for r in inventory),
        )


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchOutcome:
    """One required medication that a pharmacy can supply."""

    required: str
    matched_name: str
    quantity: int
    price: float | None
    status: str
    match_type: str
    source: str       # "inventory" | "catalog"
    record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": self.required,
            "matched_name": self.matched_name,
            "quantity": self.quantity,
            "price": self.price,
            "status": self.status,
            "match_type": self.match_type,
            "source": self.source,
            "record_id": self.record_id,
        }


@dataclass
class MatchResult:
    """Evaluation of one candidate pharmacy."""

    pharmacy_id: str
    pharmacy_name: str
    address: str
    distance_km: float
    available_medications: list[MatchOutcome]
    missing_medications: list[str]
    score: float
    qualifies: bool
    phone: str | None = None
    email: str | None = None
    estimated_fulfillment_time: str | None = None
    estimated_travel_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pharmacy_id": self.pharmacy_id,
            "pharmacy_name": self.pharmacy_name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "distance_km": self.distance_km,
            "available_medications": [m.to_dict() for m in self.available_medications],
            "missing_medications": list(self.missing_medications),
            "score": self.score,
            "qualifies": self.qualifies,
            "estimated_fulfillment_time": self.estimated_fulfillment_time,
            "estimated_travel_minutes": self.estimated_travel_minutes,
        }


@dataclass
class MatchReport:
    """Full outcome of one matching call."""

    results: list[MatchResult]
    partial: bool = False
    warnings: list[PartialResultsWarning] = field(default_factory=list)
    candidates_evaluated: int = 0
    candidates_failed: int = 0
    elapsed_ms: float = 0.0

    def top(self, n: int) -> list[MatchResult]:
        """Display slice; notification should use ``results`` instead."""
        return self.results[:n]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "partial": self.partial,
            "warnings": [w.to_dict() for w in self.warnings],
            "candidates_evaluated": self.candidates_evaluated,
            "candidates_failed": self.candidates_failed,
            "elapsed_ms": self.elapsed_ms,
        }
