"""
Prescription Matching — Engine Configuration

Defaults live in ``MatcherConfig``; ``config/matching_rules.yaml`` and
``RXM_*`` environment variables override them.

Dependencies:
    pip install pyyaml
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import InputValidationError
from .models import EligibilityMode

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = ROOT / "config" / "matching_rules.yaml"

VALID_STRATEGIES = ("flat", "catalog")
VALID_NAME_MATCHERS = ("substring", "token_set")
MAX_WORKERS_CAP = 64


@dataclass
class MatcherConfig:
    """Tunable knobs of the matching engine."""

    eligibility_mode: EligibilityMode = EligibilityMode.STRICT
    inventory_strategies: list[str] = field(default_factory=lambda: ["flat"])
    name_matcher: str = "substring"
    token_set_threshold: float = 0.85
    catalog_candidate_limit: int = 5
    max_workers: int = 16
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_min_wait: float = 0.2
    retry_max_wait: float = 2.0
    fulfillment_estimate: str = "2-4 hours"
    travel_mode: str = "driving"
    # No default radius: callers pass max_distance_km unless this is set
    default_max_distance_km: float | None = None

    def __post_init__(self) -> None:
        try:
            self.eligibility_mode = EligibilityMode(self.eligibility_mode)
        except ValueError:
            raise InputValidationError(
                f"Unknown eligibility mode {self.eligibility_mode!r}", "eligibility_mode"
            ) from None
        self.validate()

    def validate(self) -> None:
        if not self.inventory_strategies:
            raise InputValidationError("At least one inventory strategy is required", "inventory_strategies")
        unknown = [s for s in self.inventory_strategies if s not in VALID_STRATEGIES]
        if unknown:
            raise InputValidationError(
                f"Unknown inventory strategies {unknown}; expected {list(VALID_STRATEGIES)}",
                "inventory_strategies",
            )
        if self.name_matcher not in VALID_NAME_MATCHERS:
            raise InputValidationError(
                f"Unknown name matcher {self.name_matcher!r}", "name_matcher"
            )
        if not 1 <= self.max_workers <= MAX_WORKERS_CAP:
            raise InputValidationError(
                f"max_workers must be between 1 and {MAX_WORKERS_CAP}", "max_workers"
            )
        if self.timeout_seconds <= 0:
            raise InputValidationError("timeout_seconds must be positive", "timeout_seconds")
        if self.retry_attempts < 1:
            raise InputValidationError("retry_attempts must be at least 1", "retry_attempts")
        if self.catalog_candidate_limit < 1:
            raise InputValidationError(
                "catalog_candidate_limit must be at least 1", "catalog_candidate_limit"
            )
        if self.default_max_distance_km is not None and self.default_max_distance_km <= 0:
            raise InputValidationError(
                "default_max_distance_km must be positive", "default_max_distance_km"
            )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "MatcherConfig":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        matching = raw.get("matching", {})
        concurrency = raw.get("concurrency", {})
        retry = raw.get("retry", {})
        display = raw.get("display", {})

        values: dict[str, Any] = {
            "eligibility_mode": matching.get("eligibility_mode", "strict"),
            "inventory_strategies": matching.get("inventory_strategies", ["flat"]),
            "name_matcher": matching.get("name_matcher", "substring"),
            "token_set_threshold": matching.get("token_set_threshold", 0.85),
            "catalog_candidate_limit": matching.get("catalog_candidate_limit", 5),
            "default_max_distance_km": matching.get("default_max_distance_km"),
            "max_workers": concurrency.get("max_workers", 16),
            "timeout_seconds": concurrency.get("timeout_seconds", 10.0),
            "retry_attempts": retry.get("attempts", 3),
            "retry_min_wait": retry.get("min_wait_seconds", 0.2),
            "retry_max_wait": retry.get("max_wait_seconds", 2.0),
            "fulfillment_estimate": display.get("fulfillment_estimate", "2-4 hours"),
            "travel_mode": display.get("travel_mode", "driving"),
        }
        return cls(**values)

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> "MatcherConfig":
        """Return a copy with RXM_* environment variables applied."""
        env = os.environ if environ is None else environ
        values = {f.name: getattr(self, f.name) for f in fields(self)}

        if "RXM_ELIGIBILITY_MODE" in env:
            values["eligibility_mode"] = env["RXM_ELIGIBILITY_MODE"].strip().lower()
        if "RXM_INVENTORY_STRATEGIES" in env:
            values["inventory_strategies"] = [
                s.strip() for s in env["RXM_INVENTORY_STRATEGIES"].split(",") if s.strip()
            ]
        if "RXM_NAME_MATCHER" in env:
            values["name_matcher"] = env["RXM_NAME_MATCHER"].strip()
        try:
            if "RXM_MAX_WORKERS" in env:
                values["max_workers"] = int(env["RXM_MAX_WORKERS"])
            if "RXM_TIMEOUT_SECONDS" in env:
                values["timeout_seconds"] = float(env["RXM_TIMEOUT_SECONDS"])
        except ValueError as e:
            raise InputValidationError(f"Invalid numeric RXM_* override: {e}") from e

        return MatcherConfig(**values)


def load_config(path: str | Path | None = None) -> MatcherConfig:
    """
    Load the engine configuration.

    Uses the given YAML file, else config/matching_rules.yaml when present,
    else built-in defaults; RXM_* environment variables are applied last.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        config = MatcherConfig.from_yaml(config_path)
    else:
        config = MatcherConfig()
    return config.with_env_overrides()
