"""Supplier Ingestion Orchestrator.

Top-level entry point for supplier evidence. One request is one unit of
work: validate, match, create or reuse the supplier, then merge every
address, contact, bank account and identifier into the attribute ledger.
Either all of it commits or none of it does.

Outcomes:
- created / matched: supplier resolved and ledger updated
- skipped: a person should decide (low confidence, ambiguity, too little
  data, invalid input)
- failed: the system could not complete the work (storage error)
"""

import sqlite3
import time
from typing import List, Optional

from core.errors import ConcurrencyConflictError, PersistenceError, ValidationError
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_conflict, record_processing_time, record_supplier_action
from core.storage import Database
from supplier_resolver.constants import ConfidenceScores
from supplier_resolver.db import SupplierRepository
from supplier_resolver.ledger import AttributeLedger
from supplier_resolver.matcher import SupplierMatcher
from supplier_resolver.models import (
    DEFAULT_MATCHING_CONFIG,
    AttributeType,
    IngestionAction,
    IngestionResult,
    MatchingConfig,
    MatchMethod,
    MatchOutcome,
    SupplierIngestionRequest,
)
from supplier_resolver.normalize import normalize_supplier_name
from supplier_resolver.validator import SupplierValidator, ValidationReport

logger = get_logger(__name__)


VALIDATION_FAILED = "validation_failed"
PERSISTENCE_FAILED = "persistence_failed"
CONFLICT_UNRESOLVED = "conflict_unresolved"


class SupplierIngestionOrchestrator:
    """Resolves supplier evidence to a canonical supplier.

    Example:
        orchestrator = SupplierIngestionOrchestrator(db)
        result = orchestrator.ingest(SupplierIngestionRequest(
            tenant_id="t1",
            source=DataSource.INVOICE,
            source_id="ext-42",
            data=SupplierIngestionData(name="Acme Widgets Ltd"),
        ))
        if result.action == IngestionAction.SKIPPED:
            queue_for_review(result.reason)
    """

    def __init__(
        self,
        database: Database,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
        matcher: Optional[SupplierMatcher] = None,
        ledger: Optional[AttributeLedger] = None,
        validator=SupplierValidator,
        repository: Optional[SupplierRepository] = None,
    ):
        self.database = database
        self.config = config
        self.repository = repository or SupplierRepository()
        self.matcher = matcher or SupplierMatcher(database, config, self.repository)
        self.ledger = ledger or AttributeLedger(database, config, self.repository)
        self.validator = validator

    def ingest(self, request: SupplierIngestionRequest) -> IngestionResult:
        """Ingest one request. Never raises for invalid input or storage errors."""
        start_time = time.time()

        with with_correlation(
            tenant_id=request.tenant_id,
            source=request.source.value,
            source_id=request.source_id,
        ):
            result = self._ingest(request)

            record_supplier_action(result.action.value)
            record_processing_time("supplier_ingestion", (time.time() - start_time) * 1000)
            logger.info(f"Supplier ingestion {result.action.value}", extra_fields={
                "supplier_id": result.supplier_id,
                "confidence": result.confidence,
                "reason": result.reason,
            })
            return result

    def ingest_batch(self, requests: List[SupplierIngestionRequest]) -> List[IngestionResult]:
        """Each request is its own unit of work; one bad item does not stop the rest."""
        return [self.ingest(request) for request in requests]

    def _ingest(self, request: SupplierIngestionRequest) -> IngestionResult:
        try:
            report = self.validator.validate(request.data)
        except ValidationError as e:
            logger.warning("Supplier data rejected", extra_fields={"errors": e.errors})
            return IngestionResult(
                success=False,
                action=IngestionAction.SKIPPED,
                reason=VALIDATION_FAILED,
                error=str(e),
            )

        try:
            with self.database.transaction() as conn:
                return self._resolve_and_record(conn, request, report)
        except ConcurrencyConflictError as e:
            logger.error("Concurrent update could not be reconciled", extra_fields={
                "constraint": e.constraint,
            }, exc_info=True)
            return IngestionResult(
                success=False,
                action=IngestionAction.FAILED,
                reason=CONFLICT_UNRESOLVED,
                error=str(e),
            )
        except PersistenceError as e:
            logger.error("Supplier ingestion rolled back", exc_info=True)
            return IngestionResult(
                success=False,
                action=IngestionAction.FAILED,
                reason=PERSISTENCE_FAILED,
                error=str(e),
            )

    def _resolve_and_record(
        self,
        conn: sqlite3.Connection,
        request: SupplierIngestionRequest,
        report: ValidationReport,
    ) -> IngestionResult:
        data = request.data
        match = self.matcher.match(
            request.tenant_id, data.name, report.company_number, report.vat_number, conn=conn,
        )

        if match.action == IngestionAction.SKIPPED:
            return IngestionResult(
                success=True,
                action=IngestionAction.SKIPPED,
                confidence=match.confidence,
                reason=match.outcome.value,
            )

        if match.outcome == MatchOutcome.NO_MATCH:
            try:
                supplier = self.repository.insert_supplier(
                    conn, request.tenant_id, data.name,
                    company_number=report.company_number,
                    vat_number=report.vat_number,
                    max_slug_attempts=self.config.max_slug_attempts,
                )
                action = IngestionAction.CREATED
                supplier_id = supplier.id
                confidence = ConfidenceScores.SUPPLIER_CREATED
            except ConcurrencyConflictError as e:
                # Another writer created this supplier first; resolve to theirs
                record_conflict()
                logger.warning("Supplier created concurrently, re-matching", extra_fields={
                    "constraint": e.constraint,
                })
                match = self.matcher.match(
                    request.tenant_id, data.name, report.company_number, report.vat_number, conn=conn,
                )
                if match.outcome != MatchOutcome.MATCHED:
                    raise
        if match.outcome == MatchOutcome.MATCHED:
            action = IngestionAction.MATCHED
            supplier_id = match.supplier_id
            confidence = match.confidence
            self._enrich(conn, request, report, supplier_id, match.method)

        with with_correlation(supplier_id=supplier_id):
            self._record_attributes(conn, request, report, supplier_id)
            self.repository.record_data_source(conn, supplier_id, request.source, request.source_id)

        return IngestionResult(
            success=True,
            action=action,
            supplier_id=supplier_id,
            confidence=confidence,
            reason=match.reason if action == IngestionAction.MATCHED else None,
        )

    def _enrich(
        self,
        conn: sqlite3.Connection,
        request: SupplierIngestionRequest,
        report: ValidationReport,
        supplier_id: str,
        method: Optional[MatchMethod],
    ) -> None:
        """Add trading aliases and missing identifiers to a matched supplier."""
        supplier = self.repository.get_supplier(conn, supplier_id)

        if method in (MatchMethod.COMPANY_NUMBER, MatchMethod.VAT_NUMBER):
            if normalize_supplier_name(request.data.name) != supplier.normalized_name:
                if self.repository.add_alias(conn, supplier_id, request.tenant_id, request.data.name, request.source):
                    logger.info("Trading alias recorded", extra_fields={
                        "supplier_id": supplier_id,
                        "alias": request.data.name,
                    })

        if self.repository.fill_missing_identifiers(conn, supplier_id, report.company_number, report.vat_number):
            logger.info("Supplier identifiers filled in", extra_fields={"supplier_id": supplier_id})

    def _record_attributes(
        self,
        conn: sqlite3.Connection,
        request: SupplierIngestionRequest,
        report: ValidationReport,
        supplier_id: str,
    ) -> None:
        observations = []
        observations.extend((AttributeType.ADDRESS, address) for address in request.data.addresses)
        observations.extend(
            (AttributeType(contact.type.value), contact.value) for contact in request.data.contacts
        )
        observations.extend((AttributeType.BANK_ACCOUNT, account) for account in request.data.bank_accounts)
        if report.company_number:
            observations.append((AttributeType.COMPANY_NUMBER, report.company_number))
        if report.vat_number:
            observations.append((AttributeType.VAT_NUMBER, report.vat_number))

        for attribute_type, value in observations:
            self.ledger.record_attribute(
                supplier_id,
                attribute_type,
                value,
                source=request.source,
                source_id=request.source_id,
                confidence=request.confidence,
                created_by=request.user_id,
                conn=conn,
            )
