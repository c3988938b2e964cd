"""Attribute Ledger.

Merges observed facts (addresses, contacts, bank accounts, identifiers)
into a supplier's attribute history:
- Same value again: seen_count + 1, last_seen_at = now, confidence ratchets up
- New value: new row with seen_count = 1
- Primary arbitration: the best-ranked active row per attribute type is primary

Ranking is a policy (MatchingConfig.primary_ranking); the default compares
confidence, then seen_count, then last_seen_at. A challenger must rank
strictly higher to take the primary flag.
"""

import sqlite3
from typing import Any, List, Optional, Tuple

from core.errors import ConcurrencyConflictError
from core.observability.logging import get_logger
from core.observability.metrics import record_attribute, record_conflict
from core.storage import Database
from supplier_resolver.constants import MAX_PRIMARY_RETRIES, DefaultConfidence
from supplier_resolver.db import SupplierRepository
from supplier_resolver.models import (
    DEFAULT_MATCHING_CONFIG,
    AttributeRecordResult,
    AttributeType,
    DataSource,
    MatchingConfig,
    SupplierAttribute,
)
from supplier_resolver.normalize import attribute_hash, canonical_attribute

logger = get_logger(__name__)


def default_confidence(source: DataSource) -> int:
    if DataSource(source) == DataSource.MANUAL:
        return DefaultConfidence.MANUAL_ENTRY
    return DefaultConfidence.DOCUMENT_EXTRACTED


class AttributeLedger:
    """Versioned attribute history with provenance and primary arbitration.

    Example:
        ledger = AttributeLedger(db)
        result = ledger.record_attribute(
            supplier_id, AttributeType.BANK_ACCOUNT,
            {"sort_code": "12-34-56", "account_number": "12345678"},
            source=DataSource.INVOICE, source_id="ext-1", confidence=70,
        )
        result.attribute.seen_count   # 1 on first sighting
    """

    def __init__(
        self,
        database: Database,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
        repository: Optional[SupplierRepository] = None,
    ):
        self.database = database
        self.config = config
        self.repository = repository or SupplierRepository()

    def rank(self, attribute: SupplierAttribute) -> Tuple[Any, ...]:
        return tuple(getattr(attribute, field.value) for field in self.config.primary_ranking)

    def record_attribute(
        self,
        supplier_id: str,
        attribute_type: AttributeType,
        value: Any,
        source: DataSource,
        source_id: Optional[str] = None,
        confidence: Optional[int] = None,
        created_by: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> AttributeRecordResult:
        """Record one observation of an attribute value.

        Args:
            supplier_id: Supplier the fact belongs to
            attribute_type: What kind of fact this is
            value: Raw payload (model, dict or string depending on type)
            source: Where the observation came from
            source_id: External reference for provenance
            confidence: 0-100; defaults by source
            created_by: User that triggered the observation
            conn: Join the caller's transaction

        Returns:
            AttributeRecordResult with the stored row after the merge
        """
        if confidence is None:
            confidence = default_confidence(source)
        confidence = max(0, min(DefaultConfidence.MAX_CONFIDENCE, int(confidence)))

        stored_value, identity = canonical_attribute(attribute_type, value)
        value_hash = attribute_hash(identity)

        with self.database.unit_of_work(conn) as c:
            attribute = self.repository.upsert_attribute(
                c, supplier_id, attribute_type, stored_value, value_hash,
                source, source_id, confidence, self.config.repeat_increment, created_by,
            )
            created = attribute.seen_count == 1

            primary_changed = False
            if attribute.is_active:
                primary_changed = self._arbitrate_primary(c, attribute)
                if primary_changed:
                    attribute = self.repository.get_attribute(c, attribute.id)

        record_attribute(primary_changed)
        logger.debug("Attribute recorded", extra_fields={
            "supplier_id": supplier_id,
            "attribute_type": AttributeType(attribute_type).value,
            "created": created,
            "seen_count": attribute.seen_count,
            "confidence": attribute.confidence,
        })
        return AttributeRecordResult(attribute=attribute, created=created, primary_changed=primary_changed)

    def _arbitrate_primary(self, conn: sqlite3.Connection, attribute: SupplierAttribute) -> bool:
        """Give the primary flag to ``attribute`` if it outranks the holder.

        The partial unique index rejects a second primary; a concurrent
        winner is re-read and compared again.
        """
        for attempt in range(MAX_PRIMARY_RETRIES):
            current = self.repository.get_primary(conn, attribute.supplier_id, attribute.attribute_type)
            if current is not None:
                if current.id == attribute.id:
                    return False
                if self.rank(attribute) <= self.rank(current):
                    return False

            try:
                self.repository.set_primary(conn, attribute.id, current.id if current else None)
            except sqlite3.IntegrityError:
                record_conflict()
                logger.warning("Primary flag contended, retrying", extra_fields={
                    "supplier_id": attribute.supplier_id,
                    "attribute_type": attribute.attribute_type.value,
                    "attempt": attempt + 1,
                })
                continue

            logger.info("Primary attribute changed", extra_fields={
                "supplier_id": attribute.supplier_id,
                "attribute_type": attribute.attribute_type.value,
                "attribute_id": attribute.id,
                "previous_primary_id": current.id if current else None,
            })
            return True

        raise ConcurrencyConflictError(
            f"Could not settle primary {attribute.attribute_type.value} for supplier {attribute.supplier_id}",
            constraint="primary",
        )

    def deactivate_attribute(self, attribute_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Soft-delete an attribute; a primary is handed to the best remaining row."""
        with self.database.unit_of_work(conn) as c:
            attribute = self.repository.get_attribute(c, attribute_id)
            if attribute is None or not self.repository.deactivate_attribute(c, attribute_id):
                return False

            if attribute.is_primary:
                remaining = self.repository.list_attributes(c, attribute.supplier_id, attribute.attribute_type)
                if remaining:
                    successor = max(remaining, key=self.rank)
                    self.repository.set_primary(c, successor.id)
                    logger.info("Primary attribute reassigned", extra_fields={
                        "supplier_id": attribute.supplier_id,
                        "attribute_type": attribute.attribute_type.value,
                        "attribute_id": successor.id,
                    })
        return True

    def get_attributes(
        self,
        supplier_id: str,
        attribute_type: Optional[AttributeType] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> List[SupplierAttribute]:
        with self.database.connection(conn) as c:
            return self.repository.list_attributes(c, supplier_id, attribute_type)
