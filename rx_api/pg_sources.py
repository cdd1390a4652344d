"""
PostgreSQL-backed pharmacy directory, inventory and catalog sources.

Schema: sql/001_matching_schema.sql.  Transient database failures are
raised as UpstreamQueryError so the engine's retry policy applies.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg2
from psycopg2 import pool

from rx_matching.errors import UpstreamQueryError
from rx_matching.models import CatalogEntry, EligibilityMode, InventoryRecord, Pharmacy
from rx_matching.sources import DirectoryCriteria

from . import db
from .db import extras

logger = logging.getLogger(__name__)

_TRANSIENT = (psycopg2.OperationalError, psycopg2.InterfaceError, pool.PoolError)


def _fetchall(sql: str, params: tuple, what: str) -> list[dict[str, Any]]:
    try:
        with db.get_conn() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall()
    except _TRANSIENT as e:
        raise UpstreamQueryError(f"{what} query failed: {e}", source=what) from e
    except RuntimeError as e:
        # Pool not initialized
        raise UpstreamQueryError(str(e), source=what) from e


class PgPharmacyDirectory:
    """Pharmacies table, pre-filtered by eligibility and bounding box in SQL."""

    def find_eligible(self, criteria: DirectoryCriteria) -> list[Pharmacy]:
        clauses = ["latitude IS NOT NULL", "longitude IS NOT NULL"]
        params: list[Any] = []

        if criteria.eligibility_mode is EligibilityMode.STRICT:
            clauses.append("registration_status = 'approved' AND is_verified")
        else:
            clauses.append("is_active IS DISTINCT FROM false")

        if criteria.bounding_box is not None:
            min_lat, max_lat, min_lon, max_lon = criteria.bounding_box
            clauses.append("latitude BETWEEN %s AND %s AND longitude BETWEEN %s AND %s")
            params.extend([min_lat, max_lat, min_lon, max_lon])

        sql = f"""
            SELECT id, name, address, latitude, longitude, registration_status,
                   is_verified, is_active, phone, email
            FROM pharmacies
            WHERE {" AND ".join(clauses)}
            ORDER BY id
        """
        rows = _fetchall(sql, tuple(params), "directory")
        logger.debug("Directory returned %d pharmacies", len(rows))
        return [Pharmacy.from_dict(dict(r)) for r in rows]


class PgInventorySource:
    """Flat inventory_items table."""

    def records_for(self, pharmacy_id: str) -> list[InventoryRecord]:
        rows = _fetchall(
            """
            SELECT id AS item_id, pharmacy_id, medicine_name, quantity_available,
                   price_per_unit, status
            FROM inventory_items
            WHERE pharmacy_id = %s
            ORDER BY id
            """,
            (pharmacy_id,),
            "inventory",
        )
        return [
            InventoryRecord(
                pharmacy_id=str(r["pharmacy_id"]),
                medicine_name=r["medicine_name"] or "",
                quantity_available=int(r["quantity_available"] or 0),
                price_per_unit=float(r["price_per_unit"]) if r["price_per_unit"] is not None else None,
                status=r["status"] or "available",
                item_id=str(r["item_id"]),
            )
            for r in rows
        ]


class PgCatalogSource:
    """Medicines catalog with per-pharmacy stock embedded as JSONB."""

    def search(self, normalized_name: str, limit: int) -> list[CatalogEntry]:
        if not normalized_name:
            return []
        pattern = f"%{normalized_name}%"
        rows = _fetchall(
            """
            SELECT id, name, brand_name, generic_name, alternative_names, search_tags,
                   active_ingredients, status, verification_status, pharmacy_inventory
            FROM medicines
            WHERE status = 'active'
              AND verification_status = 'verified'
              AND (
                    name ILIKE %s
                 OR brand_name ILIKE %s
                 OR generic_name ILIKE %s
                 OR EXISTS (SELECT 1 FROM unnest(alternative_names) n WHERE n ILIKE %s)
                 OR EXISTS (SELECT 1 FROM unnest(search_tags) t WHERE t ILIKE %s)
                 OR EXISTS (SELECT 1 FROM unnest(active_ingredients) a WHERE a ILIKE %s)
              )
            ORDER BY id
            LIMIT %s
            """,
            (pattern, pattern, pattern, pattern, pattern, pattern, limit),
            "catalog",
        )
        return [
            CatalogEntry(
                id=str(r["id"]),
                name=r["name"] or "",
                brand_name=r["brand_name"],
                generic_name=r["generic_name"],
                alternative_names=tuple(r["alternative_names"] or ()),
                search_tags=tuple(r["search_tags"] or ()),
                active_ingredients=tuple(r["active_ingredients"] or ()),
                status=r["status"],
                verification_status=r["verification_status"],
                embedded_inventory=tuple(
                    InventoryRecord.from_dict(item) for item in (r["pharmacy_inventory"] or [])
                ),
            )
            for r in rows
        ]
