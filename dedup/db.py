"""Dedup Database Operations.

This module handles the persisted state behind duplicate detection:
- ``files``: tenant-scoped binary artifacts keyed by content hash
- ``document_extractions``: extracted invoice fields plus the duplicate
  relationship stamped onto them

All methods take an open connection so that callers decide the unit of
work (see ``core.storage.Database``).
"""

import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from core.errors import PersistenceError
from core.observability.logging import get_logger
from core.storage import parse_timestamp, to_utc_iso, utcnow_iso
from dedup.hashing import coerce_amount, normalize_invoice_number, normalize_vendor
from dedup.models import (
    INVOICE_DOCUMENT_TYPES,
    DuplicateStatus,
    ExtractedFields,
    ExtractionRecord,
    FileRecord,
    FileSource,
)

logger = get_logger(__name__)


DEDUP_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    file_name TEXT,
    content_hash TEXT,
    file_size INTEGER NOT NULL,
    source TEXT NOT NULL,
    source_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_files_identity
ON files(tenant_id, content_hash, file_size, source, IFNULL(source_id, ''));

CREATE INDEX IF NOT EXISTS idx_files_tenant_hash
ON files(tenant_id, content_hash);

CREATE TABLE IF NOT EXISTS document_extractions (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    file_id TEXT REFERENCES files(id),
    document_type TEXT NOT NULL DEFAULT 'invoice',
    extracted_fields TEXT NOT NULL DEFAULT '{}',
    vendor_key TEXT NOT NULL DEFAULT '',
    invoice_number_key TEXT NOT NULL DEFAULT '',
    amount_value REAL,
    invoice_fingerprint TEXT,
    duplicate_status TEXT,
    duplicate_confidence REAL,
    duplicate_candidate_id TEXT,
    matched_supplier_id TEXT,
    match_confidence REAL,
    processing_notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_extractions_fingerprint
ON document_extractions(tenant_id, invoice_fingerprint);

CREATE INDEX IF NOT EXISTS idx_extractions_recent
ON document_extractions(tenant_id, document_type, created_at);

CREATE INDEX IF NOT EXISTS idx_extractions_vendor
ON document_extractions(tenant_id, vendor_key);

CREATE INDEX IF NOT EXISTS idx_extractions_invoice_number
ON document_extractions(tenant_id, invoice_number_key);
"""


class DedupRepository:
    """Data access for files and document extractions."""

    # =========================================================================
    # Files
    # =========================================================================

    def insert_file(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        content_hash: str,
        file_size: int,
        source: FileSource,
        source_id: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> FileRecord:
        """Insert a file, or return the existing one with the same identity.

        Identity is (tenant_id, content_hash, file_size, source, source_id).
        """
        now = utcnow_iso()
        file_id = str(uuid.uuid4())
        try:
            conn.execute("""
                INSERT INTO files
                (id, tenant_id, file_name, content_hash, file_size, source, source_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                file_id, tenant_id, file_name, content_hash, file_size,
                FileSource(source).value, source_id, now, now,
            ))
        except sqlite3.IntegrityError:
            existing = self.find_file(conn, tenant_id, content_hash, file_size, source, source_id)
            if existing is None:
                raise PersistenceError(f"File insert conflicted but no existing file found for {content_hash}")
            return existing

        return self.get_file(conn, file_id)

    def get_file(self, conn: sqlite3.Connection, file_id: str) -> Optional[FileRecord]:
        row = conn.execute("SELECT * FROM files WHERE id = ?", (file_id,)).fetchone()
        return _row_to_file(row) if row else None

    def find_file(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        content_hash: str,
        file_size: int,
        source: FileSource,
        source_id: Optional[str] = None,
        exclude_file_id: Optional[str] = None,
    ) -> Optional[FileRecord]:
        """Exact identity lookup within a tenant."""
        query = """
            SELECT * FROM files
            WHERE tenant_id = ? AND content_hash = ? AND file_size = ?
              AND source = ? AND IFNULL(source_id, '') = IFNULL(?, '')
        """
        params = [tenant_id, content_hash, file_size, FileSource(source).value, source_id]
        if exclude_file_id:
            query += " AND id != ?"
            params.append(exclude_file_id)
        query += " ORDER BY created_at LIMIT 1"

        row = conn.execute(query, params).fetchone()
        return _row_to_file(row) if row else None

    def update_file_hash(
        self,
        conn: sqlite3.Connection,
        file_id: str,
        content_hash: str,
        file_size: int,
    ) -> bool:
        """Store a file's hash and size.

        Returns False when another file in the tenant already holds the same
        identity; the file keeps its previous hash in that case.
        """
        try:
            cursor = conn.execute("""
                UPDATE files SET content_hash = ?, file_size = ?, updated_at = ?
                WHERE id = ?
            """, (content_hash, file_size, utcnow_iso(), file_id))
        except sqlite3.IntegrityError:
            return False
        return cursor.rowcount > 0

    # =========================================================================
    # Document extractions
    # =========================================================================

    def insert_extraction(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        extracted_fields: ExtractedFields,
        document_type: str = "invoice",
        file_id: Optional[str] = None,
        extraction_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ExtractionRecord:
        extraction_id = extraction_id or str(uuid.uuid4())
        created = to_utc_iso(created_at) if created_at else utcnow_iso()
        amount = coerce_amount(extracted_fields.value_of("total_amount"))
        conn.execute("""
            INSERT INTO document_extractions
            (id, tenant_id, file_id, document_type, extracted_fields,
             vendor_key, invoice_number_key, amount_value, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            extraction_id, tenant_id, file_id, document_type,
            json.dumps(extracted_fields.to_mapping()),
            normalize_vendor(extracted_fields.value_of("vendor_name")),
            normalize_invoice_number(extracted_fields.value_of("invoice_number")),
            float(amount) if amount is not None else None,
            created, created,
        ))
        return self.get_extraction(conn, extraction_id)

    def get_extraction(self, conn: sqlite3.Connection, extraction_id: str) -> Optional[ExtractionRecord]:
        row = conn.execute(
            "SELECT * FROM document_extractions WHERE id = ?", (extraction_id,)
        ).fetchone()
        return _row_to_extraction(row) if row else None

    def find_by_fingerprint(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        fingerprint: str,
        exclude_extraction_id: Optional[str] = None,
    ) -> Optional[ExtractionRecord]:
        """Earliest extraction in the tenant carrying this fingerprint."""
        query = """
            SELECT * FROM document_extractions
            WHERE tenant_id = ? AND invoice_fingerprint = ?
        """
        params = [tenant_id, fingerprint]
        if exclude_extraction_id:
            query += " AND id != ?"
            params.append(exclude_extraction_id)
        query += " ORDER BY created_at LIMIT 1"

        row = conn.execute(query, params).fetchone()
        return _row_to_extraction(row) if row else None

    def find_candidate_extractions(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        exclude_extraction_id: Optional[str] = None,
        limit: int = 10,
        window_days: Optional[int] = 365,
        extracted_fields: Optional[ExtractedFields] = None,
        amount_band: Decimal = Decimal("0.05"),
    ) -> List[ExtractionRecord]:
        """Recent invoice-type extractions in the tenant that resemble the new one.

        With ``extracted_fields`` given, a candidate must share something with
        it before the limit applies: a vendor name containing (or contained
        in) the new one, the same invoice number, or a total within
        ``amount_band`` of the new total. Without any of those fields the
        most recent extractions are returned.
        """
        placeholders = ", ".join("?" for _ in INVOICE_DOCUMENT_TYPES)
        query = f"""
            SELECT * FROM document_extractions
            WHERE tenant_id = ? AND document_type IN ({placeholders})
        """
        params: list = [tenant_id, *INVOICE_DOCUMENT_TYPES]
        if exclude_extraction_id:
            query += " AND id != ?"
            params.append(exclude_extraction_id)
        if window_days:
            cutoff = to_utc_iso(datetime.now(timezone.utc) - timedelta(days=window_days))
            query += " AND created_at >= ?"
            params.append(cutoff)

        if extracted_fields is not None:
            similar, similar_params = _similarity_filter(extracted_fields, amount_band)
            if similar:
                query += f" AND ({similar})"
                params.extend(similar_params)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        return [_row_to_extraction(row) for row in conn.execute(query, params).fetchall()]

    def update_duplicate_status(
        self,
        conn: sqlite3.Connection,
        extraction_id: str,
        fingerprint: str,
        status: DuplicateStatus,
        confidence: float,
        candidate_id: Optional[str] = None,
    ) -> bool:
        cursor = conn.execute("""
            UPDATE document_extractions
            SET invoice_fingerprint = ?, duplicate_status = ?, duplicate_confidence = ?,
                duplicate_candidate_id = ?, updated_at = ?
            WHERE id = ?
        """, (
            fingerprint, DuplicateStatus(status).value, confidence,
            candidate_id, utcnow_iso(), extraction_id,
        ))
        return cursor.rowcount > 0

    def update_supplier_match(
        self,
        conn: sqlite3.Connection,
        extraction_id: str,
        supplier_id: Optional[str],
        confidence: float,
        notes: str,
    ) -> bool:
        """Stamp the supplier resolution outcome onto an extraction."""
        cursor = conn.execute("""
            UPDATE document_extractions
            SET matched_supplier_id = ?, match_confidence = ?, processing_notes = ?, updated_at = ?
            WHERE id = ?
        """, (supplier_id, confidence, notes, utcnow_iso(), extraction_id))
        return cursor.rowcount > 0

    def get_duplicate_chain(self, conn: sqlite3.Connection, extraction_id: str) -> List[ExtractionRecord]:
        """All extractions sharing this extraction's fingerprint, oldest first."""
        extraction = self.get_extraction(conn, extraction_id)
        if extraction is None or not extraction.invoice_fingerprint:
            return []

        rows = conn.execute("""
            SELECT * FROM document_extractions
            WHERE tenant_id = ? AND invoice_fingerprint = ?
            ORDER BY created_at, id
        """, (extraction.tenant_id, extraction.invoice_fingerprint)).fetchall()
        return [_row_to_extraction(row) for row in rows]


# =============================================================================
# Helpers
# =============================================================================

def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _similarity_filter(fields: ExtractedFields, amount_band: Decimal):
    """SQL disjunction selecting extractions that could score against ``fields``."""
    clauses: List[str] = []
    params: list = []

    vendor = normalize_vendor(fields.value_of("vendor_name"))
    if vendor:
        clauses.append(
            "vendor_key LIKE ? ESCAPE '\\' "
            "OR (vendor_key != '' AND ? LIKE '%' || vendor_key || '%')"
        )
        params.extend([f"%{_escape_like(vendor)}%", vendor])

    invoice_number = normalize_invoice_number(fields.value_of("invoice_number"))
    if invoice_number:
        clauses.append("invoice_number_key = ?")
        params.append(invoice_number)

    amount = coerce_amount(fields.value_of("total_amount"))
    if amount is not None:
        delta = max(abs(amount) * amount_band, Decimal("0.01"))
        clauses.append("amount_value BETWEEN ? AND ?")
        params.extend([float(amount - delta), float(amount + delta)])

    return " OR ".join(f"({clause})" for clause in clauses), params


def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        id=row["id"],
        tenant_id=row["tenant_id"],
        file_name=row["file_name"],
        content_hash=row["content_hash"],
        file_size=row["file_size"],
        source=FileSource(row["source"]),
        source_id=row["source_id"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _row_to_extraction(row: sqlite3.Row) -> ExtractionRecord:
    return ExtractionRecord(
        id=row["id"],
        tenant_id=row["tenant_id"],
        file_id=row["file_id"],
        document_type=row["document_type"],
        extracted_fields=ExtractedFields.from_mapping(json.loads(row["extracted_fields"] or "{}")),
        invoice_fingerprint=row["invoice_fingerprint"],
        duplicate_status=DuplicateStatus(row["duplicate_status"]) if row["duplicate_status"] else None,
        duplicate_confidence=row["duplicate_confidence"],
        duplicate_candidate_id=row["duplicate_candidate_id"],
        matched_supplier_id=row["matched_supplier_id"],
        match_confidence=row["match_confidence"],
        processing_notes=row["processing_notes"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )
