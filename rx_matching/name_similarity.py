#!/usr/bin/env python3
"""
Prescription Matching — Medicine Name Comparison

Normalizes medicine names into a comparison key and provides the name
matchers used to decide whether a stocked item satisfies a prescribed one.

Two matchers share one interface:
    - SubstringNameMatcher: exact → inventory-contains-required →
      required-contains-inventory (first tier that hits wins)
    - TokenSetNameMatcher:  rapidfuzz token-set ratio above a threshold

Dependencies:
    pip install rapidfuzz
"""

from __future__ import annotations

import re
from typing import Protocol, Sequence

from rapidfuzz import fuzz


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

_MULTI_SPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

MATCH_EXACT = "exact"
MATCH_INVENTORY_CONTAINS_REQUIRED = "inventory_contains_required"
MATCH_REQUIRED_CONTAINS_INVENTORY = "required_contains_inventory"
MATCH_TOKEN_SET = "token_set"


def normalize_medicine_name(name: str | None) -> str:
    """
    Normalize a medicine name for comparison.

    Steps:
        1. Lowercase and trim
        2. Remove every character outside [a-z0-9] and whitespace
        3. Collapse whitespace and trim

    "Augmentin 625 Duo Tablet!" → "augmentin 625 duo tablet"
    """
    if not name:
        return ""

    text = name.lower().strip()
    text = _NON_ALNUM.sub("", text)
    return _MULTI_SPACE.sub(" ", text).strip()


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------


class NameMatcher(Protocol):
    """Pick the stocked name that satisfies a required name, if any."""

    def match(
        self,
        required: str,
        candidates: Sequence[str],
    ) -> tuple[int, str] | None:
        """Return (index into candidates, match_type) or None."""
        ...


class SubstringNameMatcher:
    """
    Three-tier substring matcher on normalized names.

    Tiers are tried in strict priority order across the whole candidate
    list; the first candidate satisfying the highest tier wins.
    """

    name = "substring"

    def match(
        self,
        required: str,
        candidates: Sequence[str],
    ) -> tuple[int, str] | None:
        if not required:
            return None

        for i, cand in enumerate(candidates):
            if cand == required:
                return i, MATCH_EXACT

        for i, cand in enumerate(candidates):
            if required in cand:
                return i, MATCH_INVENTORY_CONTAINS_REQUIRED

        for i, cand in enumerate(candidates):
            # An empty stocked name is a substring of everything
            if cand and cand in required:
                return i, MATCH_REQUIRED_CONTAINS_INVENTORY

        return None


class TokenSetNameMatcher:
    """
    Token-set similarity matcher.

    Handles word-order and superset variations that plain substring checks
    miss ("tablet metformin 500mg" vs "metformin 500mg").  The best scoring
    candidate at or above the threshold wins; ties keep the earliest.
    """

    name = "token_set"

    def __init__(self, threshold: float = 0.85):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold

    def match(
        self,
        required: str,
        candidates: Sequence[str],
    ) -> tuple[int, str] | None:
        if not required:
            return None

        best_index = -1
        best_score = 0.0
        for i, cand in enumerate(candidates):
            if not cand:
                continue
            if cand == required:
                return i, MATCH_EXACT
            score = fuzz.token_set_ratio(required, cand) / 100.0
            if score > best_score:
                best_index, best_score = i, score

        if best_index >= 0 and best_score >= self.threshold:
            return best_index, MATCH_TOKEN_SET
        return None


_MATCHERS = {
    SubstringNameMatcher.name: SubstringNameMatcher,
    TokenSetNameMatcher.name: TokenSetNameMatcher,
}


def get_name_matcher(name: str = "substring", **kwargs) -> NameMatcher:
    """Build a name matcher by its registered name."""
    try:
        cls = _MATCHERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown name matcher {name!r}; expected one of {sorted(_MATCHERS)}"
        ) from None
    if cls is SubstringNameMatcher:
        return cls()
    return cls(**kwargs)
