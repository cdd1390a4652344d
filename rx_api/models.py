"""Pydantic request models for the Prescription Matching API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MedicationIn(BaseModel):
    name: str = Field(
        ...,
        description="Medicine name as written on the prescription",
    )
    quantity: Any = Field(
        None,
        description='Count (30, "30 tablets") or {"prescribed", "unit"}',
    )
    dosage: str | None = Field(
        None,
        description="Dosage/strength, informational only",
    )
    unit: str | None = Field(
        None,
        description="Dispensing unit, informational only",
    )


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class MatchRequest(BaseModel):
    medications: list[MedicationIn] = Field(
        ...,
        min_length=1,
        description="Required medications; every one must be in stock for a pharmacy to match",
    )
    patient_location: LocationIn
    max_distance_km: float | None = Field(
        None,
        gt=0,
        description="Search radius in km (required unless the server configures a default)",
    )
    eligibility_mode: str | None = Field(
        None,
        description="strict (default) or relaxed; relaxed is for development only",
    )
    display_limit: int = Field(
        10,
        ge=1,
        le=100,
        description="How many results to include in data; target_pharmacies is never truncated",
    )


class ParsedPrescriptionMatchRequest(BaseModel):
    prescription: dict[str, Any] = Field(
        ...,
        description="Parsed prescription payload ({medications: [...]} or legacy {medicine})",
    )
    patient_location: LocationIn
    max_distance_km: float | None = Field(None, gt=0)
    eligibility_mode: str | None = None
    display_limit: int = Field(10, ge=1, le=100)
