"""Supplier Resolver Database Operations.

This module handles all database operations for supplier resolution:
- Schema for suppliers, the attribute ledger, trading aliases and data sources
- Supplier creation with collision-avoiding slugs
- Attribute upsert by value hash (insert-or-increment in one statement)
- Primary flag reads and flips

Unique indexes are the serialization points for concurrent writers:
- (tenant_id, slug) for every supplier, deleted ones included
- (tenant_id, normalized_name) and (tenant_id, company_number) for active suppliers
- (supplier_id, attribute_type, hash) for attribute rows
- (supplier_id, attribute_type) for the active primary row
"""

import json
import sqlite3
import uuid
from typing import Dict, List, Optional, Tuple

from core.errors import ConcurrencyConflictError, PersistenceError
from core.observability.logging import get_logger
from core.storage import parse_timestamp, utcnow_iso
from supplier_resolver.constants import MAX_SLUG_ATTEMPTS
from supplier_resolver.models import (
    AttributeType,
    DataSource,
    Supplier,
    SupplierAttribute,
    SupplierStatus,
)
from supplier_resolver.normalize import generate_slug, normalize_supplier_name, slug_candidate

logger = get_logger(__name__)


SUPPLIER_SCHEMA = """
CREATE TABLE IF NOT EXISTS suppliers (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    legal_name TEXT NOT NULL,
    display_name TEXT NOT NULL,
    slug TEXT NOT NULL,
    normalized_name TEXT NOT NULL,
    company_number TEXT,
    vat_number TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_suppliers_slug
ON suppliers(tenant_id, slug);

CREATE UNIQUE INDEX IF NOT EXISTS uq_suppliers_normalized_name
ON suppliers(tenant_id, normalized_name) WHERE status = 'active';

CREATE UNIQUE INDEX IF NOT EXISTS uq_suppliers_company_number
ON suppliers(tenant_id, company_number)
WHERE company_number IS NOT NULL AND status = 'active';

CREATE INDEX IF NOT EXISTS idx_suppliers_vat
ON suppliers(tenant_id, vat_number);

CREATE TABLE IF NOT EXISTS supplier_attributes (
    id TEXT PRIMARY KEY,
    supplier_id TEXT NOT NULL REFERENCES suppliers(id),
    attribute_type TEXT NOT NULL,
    value TEXT NOT NULL,
    hash TEXT NOT NULL,
    source TEXT NOT NULL,
    source_id TEXT,
    confidence INTEGER NOT NULL,
    is_primary INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    seen_count INTEGER NOT NULL DEFAULT 1,
    created_by TEXT,
    UNIQUE(supplier_id, attribute_type, hash)
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_supplier_attributes_primary
ON supplier_attributes(supplier_id, attribute_type)
WHERE is_primary = 1 AND is_active = 1;

CREATE TABLE IF NOT EXISTS supplier_aliases (
    id TEXT PRIMARY KEY,
    supplier_id TEXT NOT NULL REFERENCES suppliers(id),
    tenant_id TEXT NOT NULL,
    alias TEXT NOT NULL,
    normalized_alias TEXT NOT NULL,
    source TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(supplier_id, normalized_alias)
);

CREATE INDEX IF NOT EXISTS idx_supplier_aliases_lookup
ON supplier_aliases(tenant_id, normalized_alias);

CREATE TABLE IF NOT EXISTS supplier_data_sources (
    id TEXT PRIMARY KEY,
    supplier_id TEXT NOT NULL REFERENCES suppliers(id),
    source_type TEXT NOT NULL,
    source_id TEXT NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 1,
    first_seen_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    UNIQUE(supplier_id, source_type, source_id)
);
"""


def _conflicting_constraint(error: sqlite3.IntegrityError) -> str:
    message = str(error)
    for constraint in ("slug", "normalized_name", "company_number"):
        if constraint in message:
            return constraint
    return ""


class SupplierRepository:
    """Data access for suppliers and their attribute ledger."""

    # =========================================================================
    # Suppliers
    # =========================================================================

    def insert_supplier(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        name: str,
        company_number: Optional[str] = None,
        vat_number: Optional[str] = None,
        max_slug_attempts: int = MAX_SLUG_ATTEMPTS,
    ) -> Supplier:
        """Create an active supplier with a unique slug.

        Slug collisions are retried as base-1, base-2, ... up to the cap.

        Raises:
            ConcurrencyConflictError: An active supplier with the same
                normalized name or company number already exists.
            PersistenceError: No free slug within the attempt cap.
        """
        base = generate_slug(name)
        supplier_id = str(uuid.uuid4())
        normalized_name = normalize_supplier_name(name)
        display_name = " ".join(name.split())

        for attempt in range(max_slug_attempts):
            slug = slug_candidate(base, attempt)
            now = utcnow_iso()
            try:
                conn.execute("""
                    INSERT INTO suppliers
                    (id, tenant_id, legal_name, display_name, slug, normalized_name,
                     company_number, vat_number, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    supplier_id, tenant_id, display_name, display_name, slug, normalized_name,
                    company_number, vat_number, SupplierStatus.ACTIVE.value, now, now,
                ))
            except sqlite3.IntegrityError as e:
                constraint = _conflicting_constraint(e)
                if constraint == "slug":
                    logger.debug("Slug collision, retrying", extra_fields={"slug": slug})
                    continue
                raise ConcurrencyConflictError(
                    f"Supplier '{name}' conflicts with an existing supplier on {constraint or 'a unique key'}",
                    constraint=constraint,
                ) from e
            return self.get_supplier(conn, supplier_id)

        raise PersistenceError(f"No free slug for '{base}' after {max_slug_attempts} attempts")

    def get_supplier(self, conn: sqlite3.Connection, supplier_id: str) -> Optional[Supplier]:
        row = conn.execute("SELECT * FROM suppliers WHERE id = ?", (supplier_id,)).fetchone()
        return _row_to_supplier(row) if row else None

    def find_active_by_company_number(
        self, conn: sqlite3.Connection, tenant_id: str, company_number: str
    ) -> Optional[Supplier]:
        row = conn.execute("""
            SELECT * FROM suppliers
            WHERE tenant_id = ? AND company_number = ? AND status = 'active'
        """, (tenant_id, company_number)).fetchone()
        return _row_to_supplier(row) if row else None

    def find_active_by_vat_number(
        self, conn: sqlite3.Connection, tenant_id: str, vat_number: str
    ) -> List[Supplier]:
        """VAT numbers may be shared by several trading names."""
        rows = conn.execute("""
            SELECT * FROM suppliers
            WHERE tenant_id = ? AND vat_number = ? AND status = 'active'
            ORDER BY created_at
        """, (tenant_id, vat_number)).fetchall()
        return [_row_to_supplier(row) for row in rows]

    def find_active_by_name(
        self, conn: sqlite3.Connection, tenant_id: str, normalized_name: str
    ) -> Optional[Supplier]:
        """Exact normalized-name lookup against names and trading aliases."""
        row = conn.execute("""
            SELECT * FROM suppliers
            WHERE tenant_id = ? AND normalized_name = ? AND status = 'active'
        """, (tenant_id, normalized_name)).fetchone()
        if row:
            return _row_to_supplier(row)

        row = conn.execute("""
            SELECT s.* FROM supplier_aliases a
            JOIN suppliers s ON s.id = a.supplier_id
            WHERE a.tenant_id = ? AND a.normalized_alias = ? AND s.status = 'active'
            ORDER BY s.created_at
            LIMIT 1
        """, (tenant_id, normalized_name)).fetchone()
        return _row_to_supplier(row) if row else None

    def list_match_candidates(
        self, conn: sqlite3.Connection, tenant_id: str
    ) -> List[Tuple[Supplier, List[str]]]:
        """Active suppliers with their known trading aliases."""
        suppliers = [
            _row_to_supplier(row)
            for row in conn.execute("""
                SELECT * FROM suppliers WHERE tenant_id = ? AND status = 'active'
                ORDER BY created_at
            """, (tenant_id,)).fetchall()
        ]

        aliases: Dict[str, List[str]] = {}
        for row in conn.execute("""
            SELECT supplier_id, alias FROM supplier_aliases WHERE tenant_id = ?
        """, (tenant_id,)).fetchall():
            aliases.setdefault(row["supplier_id"], []).append(row["alias"])

        return [(supplier, aliases.get(supplier.id, [])) for supplier in suppliers]

    def fill_missing_identifiers(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        company_number: Optional[str] = None,
        vat_number: Optional[str] = None,
    ) -> bool:
        """Set company/VAT number where the supplier has none. Never overwrites."""
        if not company_number and not vat_number:
            return False
        try:
            cursor = conn.execute("""
                UPDATE suppliers
                SET company_number = COALESCE(company_number, ?),
                    vat_number = COALESCE(vat_number, ?),
                    updated_at = ?
                WHERE id = ? AND (
                    (company_number IS NULL AND ? IS NOT NULL) OR
                    (vat_number IS NULL AND ? IS NOT NULL)
                )
            """, (company_number, vat_number, utcnow_iso(), supplier_id, company_number, vat_number))
        except sqlite3.IntegrityError:
            # Company number already belongs to another active supplier
            logger.warning("Identifier enrichment skipped", extra_fields={
                "supplier_id": supplier_id,
                "company_number": company_number,
            })
            return False
        return cursor.rowcount > 0

    def soft_delete_supplier(self, conn: sqlite3.Connection, supplier_id: str) -> bool:
        now = utcnow_iso()
        cursor = conn.execute("""
            UPDATE suppliers SET status = 'deleted', deleted_at = ?, updated_at = ?
            WHERE id = ? AND status != 'deleted'
        """, (now, now, supplier_id))
        return cursor.rowcount > 0

    # =========================================================================
    # Aliases and data sources
    # =========================================================================

    def add_alias(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        tenant_id: str,
        alias: str,
        source: Optional[DataSource] = None,
    ) -> bool:
        cursor = conn.execute("""
            INSERT INTO supplier_aliases (id, supplier_id, tenant_id, alias, normalized_alias, source, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(supplier_id, normalized_alias) DO NOTHING
        """, (
            str(uuid.uuid4()), supplier_id, tenant_id, " ".join(alias.split()),
            normalize_supplier_name(alias), DataSource(source).value if source else None, utcnow_iso(),
        ))
        return cursor.rowcount > 0

    def get_aliases(self, conn: sqlite3.Connection, supplier_id: str) -> List[str]:
        rows = conn.execute(
            "SELECT alias FROM supplier_aliases WHERE supplier_id = ? ORDER BY created_at", (supplier_id,)
        ).fetchall()
        return [row["alias"] for row in rows]

    def record_data_source(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        source_type: DataSource,
        source_id: str,
    ) -> int:
        """Track that this source mentioned the supplier; returns the occurrence count."""
        now = utcnow_iso()
        conn.execute("""
            INSERT INTO supplier_data_sources
            (id, supplier_id, source_type, source_id, occurrence_count, first_seen_at, last_seen_at)
            VALUES (?, ?, ?, ?, 1, ?, ?)
            ON CONFLICT(supplier_id, source_type, source_id) DO UPDATE SET
                occurrence_count = occurrence_count + 1,
                last_seen_at = excluded.last_seen_at
        """, (str(uuid.uuid4()), supplier_id, DataSource(source_type).value, source_id, now, now))

        row = conn.execute("""
            SELECT occurrence_count FROM supplier_data_sources
            WHERE supplier_id = ? AND source_type = ? AND source_id = ?
        """, (supplier_id, DataSource(source_type).value, source_id)).fetchone()
        return row["occurrence_count"]

    def get_data_sources(self, conn: sqlite3.Connection, supplier_id: str) -> List[Dict]:
        rows = conn.execute("""
            SELECT source_type, source_id, occurrence_count FROM supplier_data_sources
            WHERE supplier_id = ? ORDER BY first_seen_at
        """, (supplier_id,)).fetchall()
        return [dict(row) for row in rows]

    # =========================================================================
    # Attribute ledger
    # =========================================================================

    def upsert_attribute(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        attribute_type: AttributeType,
        value: Dict,
        value_hash: str,
        source: DataSource,
        source_id: Optional[str],
        confidence: int,
        repeat_increment: int,
        created_by: Optional[str] = None,
    ) -> SupplierAttribute:
        """Insert a new observation or fold it into the existing row.

        On resighting: seen_count + 1, last_seen_at = now and
        confidence = min(100, max(stored + repeat_increment, new)).
        """
        now = utcnow_iso()
        conn.execute("""
            INSERT INTO supplier_attributes
            (id, supplier_id, attribute_type, value, hash, source, source_id, confidence,
             is_primary, is_active, first_seen_at, last_seen_at, seen_count, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 1, ?, ?, 1, ?)
            ON CONFLICT(supplier_id, attribute_type, hash) DO UPDATE SET
                seen_count = seen_count + 1,
                last_seen_at = excluded.last_seen_at,
                confidence = MIN(100, MAX(confidence + ?, excluded.confidence))
        """, (
            str(uuid.uuid4()), supplier_id, AttributeType(attribute_type).value,
            json.dumps(value, sort_keys=True), value_hash, DataSource(source).value, source_id,
            confidence, now, now, created_by, repeat_increment,
        ))

        return self.get_attribute_by_hash(conn, supplier_id, attribute_type, value_hash)

    def get_attribute_by_hash(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        attribute_type: AttributeType,
        value_hash: str,
    ) -> Optional[SupplierAttribute]:
        row = conn.execute("""
            SELECT * FROM supplier_attributes
            WHERE supplier_id = ? AND attribute_type = ? AND hash = ?
        """, (supplier_id, AttributeType(attribute_type).value, value_hash)).fetchone()
        return _row_to_attribute(row) if row else None

    def get_attribute(self, conn: sqlite3.Connection, attribute_id: str) -> Optional[SupplierAttribute]:
        row = conn.execute("SELECT * FROM supplier_attributes WHERE id = ?", (attribute_id,)).fetchone()
        return _row_to_attribute(row) if row else None

    def get_primary(
        self, conn: sqlite3.Connection, supplier_id: str, attribute_type: AttributeType
    ) -> Optional[SupplierAttribute]:
        row = conn.execute("""
            SELECT * FROM supplier_attributes
            WHERE supplier_id = ? AND attribute_type = ? AND is_primary = 1 AND is_active = 1
        """, (supplier_id, AttributeType(attribute_type).value)).fetchone()
        return _row_to_attribute(row) if row else None

    def set_primary(
        self, conn: sqlite3.Connection, attribute_id: str, previous_id: Optional[str] = None
    ) -> None:
        """Move the primary flag; the old row is cleared first to keep the index satisfied."""
        if previous_id:
            conn.execute("UPDATE supplier_attributes SET is_primary = 0 WHERE id = ?", (previous_id,))
        conn.execute("UPDATE supplier_attributes SET is_primary = 1 WHERE id = ?", (attribute_id,))

    def deactivate_attribute(self, conn: sqlite3.Connection, attribute_id: str) -> bool:
        cursor = conn.execute("""
            UPDATE supplier_attributes SET is_active = 0, is_primary = 0
            WHERE id = ? AND is_active = 1
        """, (attribute_id,))
        return cursor.rowcount > 0

    def list_attributes(
        self,
        conn: sqlite3.Connection,
        supplier_id: str,
        attribute_type: Optional[AttributeType] = None,
        active_only: bool = True,
    ) -> List[SupplierAttribute]:
        query = "SELECT * FROM supplier_attributes WHERE supplier_id = ?"
        params: list = [supplier_id]
        if attribute_type is not None:
            query += " AND attribute_type = ?"
            params.append(AttributeType(attribute_type).value)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY attribute_type, first_seen_at"
        return [_row_to_attribute(row) for row in conn.execute(query, params).fetchall()]


# =============================================================================
# Helpers
# =============================================================================

def _row_to_supplier(row: sqlite3.Row) -> Supplier:
    return Supplier(
        id=row["id"],
        tenant_id=row["tenant_id"],
        legal_name=row["legal_name"],
        display_name=row["display_name"],
        slug=row["slug"],
        normalized_name=row["normalized_name"],
        company_number=row["company_number"],
        vat_number=row["vat_number"],
        status=SupplierStatus(row["status"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        deleted_at=parse_timestamp(row["deleted_at"]),
    )


def _row_to_attribute(row: sqlite3.Row) -> SupplierAttribute:
    return SupplierAttribute(
        id=row["id"],
        supplier_id=row["supplier_id"],
        attribute_type=AttributeType(row["attribute_type"]),
        value=json.loads(row["value"]),
        hash=row["hash"],
        source=DataSource(row["source"]),
        source_id=row["source_id"],
        confidence=row["confidence"],
        is_primary=bool(row["is_primary"]),
        is_active=bool(row["is_active"]),
        first_seen_at=parse_timestamp(row["first_seen_at"]),
        last_seen_at=parse_timestamp(row["last_seen_at"]),
        seen_count=row["seen_count"],
        created_by=row["created_by"],
    )
