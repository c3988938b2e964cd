"""
Identity Resolution Activities

Temporal activities wrapping the resolution engine:
- check_file_duplicate: Exact byte-identical file detection
- check_invoice_duplicate: Classify an extraction and stamp the verdict
- ingest_supplier: Resolve supplier evidence to a canonical supplier
- process_invoice_supplier: Extraction -> supplier request -> ingestion -> stamp

Every activity is safe to retry with the same input.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.config import ResolutionSettings, load_settings
from core.observability.logging import with_correlation
from core.observability.metrics import (
    record_activity_completed,
    record_activity_failed,
    record_activity_started,
)
from core.storage import Database
from dedup import (
    DEDUP_SCHEMA,
    DedupRepository,
    FileDuplicateDetector,
    FileSource,
    InvoiceDuplicateDetector,
)
from dedup.models import INVOICE_DOCUMENT_TYPES
from supplier_resolver import (
    SUPPLIER_SCHEMA,
    ConfidenceScores,
    IngestionAction,
    IngestionResult,
    ProcessingNotes,
    SupplierIngestionOrchestrator,
    SupplierIngestionRequest,
    build_supplier_request,
)
from supplier_resolver.ingestion import VALIDATION_FAILED


TASK_QUEUE = "identity-resolution"


# =============================================================================
# Service wiring
# =============================================================================

class ResolutionServices:
    """Detectors and orchestrator sharing one database."""

    def __init__(self, settings: ResolutionSettings):
        self.settings = settings
        self.database = Database(settings.db_path)
        self.database.init_schema(DEDUP_SCHEMA, SUPPLIER_SCHEMA)
        self.dedup_repository = DedupRepository()
        self.file_detector = FileDuplicateDetector(self.database, self.dedup_repository)
        self.invoice_detector = InvoiceDuplicateDetector(self.database, settings.dedup, self.dedup_repository)
        self.orchestrator = SupplierIngestionOrchestrator(self.database, settings.matching)


_services: Optional[ResolutionServices] = None


def configure_services(settings: Optional[ResolutionSettings] = None) -> ResolutionServices:
    """(Re)build the services used by the activities in this process."""
    global _services
    _services = ResolutionServices(settings or load_settings())
    return _services


def get_services() -> ResolutionServices:
    if _services is None:
        return configure_services()
    return _services


# =============================================================================
# Activity Input/Output Models
# =============================================================================

@dataclass
class CheckFileDuplicateInput:
    """Input for check_file_duplicate activity"""
    tenant_id: str
    source: str
    content_hash: str
    file_size: int
    source_id: Optional[str] = None
    exclude_file_id: Optional[str] = None


@dataclass
class CheckFileDuplicateOutput:
    is_duplicate: bool
    content_hash: str
    confidence: float
    duplicate_file_id: Optional[str] = None


@dataclass
class CheckInvoiceDuplicateInput:
    """Input for check_invoice_duplicate activity"""
    tenant_id: str
    extraction_id: str


@dataclass
class CheckInvoiceDuplicateOutput:
    is_duplicate: bool
    fingerprint: str
    duplicate_type: str
    confidence: float
    duplicate_extraction_id: Optional[str] = None
    score_breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class IngestSupplierInput:
    """Input for ingest_supplier activity

    Attributes:
        request: SupplierIngestionRequest as a JSON-compatible dict
    """
    request: Dict[str, Any]


@dataclass
class IngestSupplierOutput:
    success: bool
    action: str
    confidence: float
    supplier_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProcessInvoiceSupplierInput:
    """Input for process_invoice_supplier activity"""
    tenant_id: str
    extraction_id: str
    user_id: Optional[str] = None


@dataclass
class ProcessInvoiceSupplierOutput:
    skipped: bool
    action: Optional[str] = None
    supplier_id: Optional[str] = None
    confidence: float = 0.0
    reason: Optional[str] = None


def _to_output(result: IngestionResult) -> IngestSupplierOutput:
    return IngestSupplierOutput(
        success=result.success,
        action=result.action.value,
        confidence=result.confidence,
        supplier_id=result.supplier_id,
        reason=result.reason,
        error=result.error,
    )


# Skip reasons -> note stamped on the extraction
_SKIP_NOTES = {
    "low_confidence": ProcessingNotes.LOW_CONFIDENCE,
    "ambiguous": ProcessingNotes.AMBIGUOUS,
    "insufficient_data": ProcessingNotes.INSUFFICIENT_DATA,
    VALIDATION_FAILED: ProcessingNotes.VALIDATION_FAILED,
}


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def check_file_duplicate(input: CheckFileDuplicateInput) -> CheckFileDuplicateOutput:
    """Check whether a file's bytes are already known in the tenant."""
    name = "check_file_duplicate"
    record_activity_started(name)
    start = time.time()
    activity.logger.info(f"Checking file duplicate for tenant={input.tenant_id}, hash={input.content_hash}")

    try:
        verdict = get_services().file_detector.check_file_duplicate(
            tenant_id=input.tenant_id,
            source=FileSource(input.source),
            content_hash=input.content_hash,
            file_size=input.file_size,
            source_id=input.source_id,
            exclude_file_id=input.exclude_file_id,
        )
    except Exception as e:
        record_activity_failed(name, str(e))
        raise

    record_activity_completed(name, (time.time() - start) * 1000)
    return CheckFileDuplicateOutput(
        is_duplicate=verdict.is_duplicate,
        content_hash=verdict.content_hash,
        confidence=verdict.confidence,
        duplicate_file_id=verdict.duplicate_file_id,
    )


@activity.defn
async def check_invoice_duplicate(input: CheckInvoiceDuplicateInput) -> CheckInvoiceDuplicateOutput:
    """Classify a stored extraction against prior invoices and stamp the verdict."""
    name = "check_invoice_duplicate"
    record_activity_started(name)
    start = time.time()
    services = get_services()

    with with_correlation(tenant_id=input.tenant_id, extraction_id=input.extraction_id, activity_name=name):
        try:
            with services.database.read() as conn:
                extraction = services.dedup_repository.get_extraction(conn, input.extraction_id)
            if extraction is None or extraction.tenant_id != input.tenant_id:
                raise ApplicationError(
                    f"Document extraction not found: {input.extraction_id}",
                    type="ExtractionNotFound",
                    non_retryable=True,
                )

            verdict = services.invoice_detector.check_invoice_duplicate(
                extraction.extracted_fields, input.tenant_id, extraction_id=extraction.id,
            )
            services.invoice_detector.update_duplicate_status(extraction.id, verdict)
        except Exception as e:
            record_activity_failed(name, str(e))
            raise

    activity.logger.info(
        f"Invoice duplicate check: {verdict.duplicate_type.value} ({verdict.confidence:.2f})"
    )
    record_activity_completed(name, (time.time() - start) * 1000)
    return CheckInvoiceDuplicateOutput(
        is_duplicate=verdict.is_duplicate,
        fingerprint=verdict.fingerprint,
        duplicate_type=verdict.duplicate_type.value,
        confidence=verdict.confidence,
        duplicate_extraction_id=verdict.duplicate_extraction_id,
        score_breakdown=verdict.score_breakdown.model_dump() if verdict.score_breakdown else {},
    )


@activity.defn
async def ingest_supplier(input: IngestSupplierInput) -> IngestSupplierOutput:
    """Resolve one piece of supplier evidence."""
    name = "ingest_supplier"
    record_activity_started(name)
    start = time.time()

    request = SupplierIngestionRequest.model_validate(input.request)
    result = get_services().orchestrator.ingest(request)

    activity.logger.info(f"Supplier ingestion: {result.action.value} supplier={result.supplier_id}")
    if result.action == IngestionAction.FAILED:
        record_activity_failed(name, result.error)
    else:
        record_activity_completed(name, (time.time() - start) * 1000)
    return _to_output(result)


@activity.defn
async def process_invoice_supplier(input: ProcessInvoiceSupplierInput) -> ProcessInvoiceSupplierOutput:
    """Resolve the supplier of a stored invoice extraction and stamp the outcome on it."""
    name = "process_invoice_supplier"
    record_activity_started(name)
    start = time.time()
    services = get_services()
    repository = services.dedup_repository

    with with_correlation(tenant_id=input.tenant_id, extraction_id=input.extraction_id, activity_name=name):
        with services.database.read() as conn:
            extraction = repository.get_extraction(conn, input.extraction_id)

        if extraction is None or extraction.tenant_id != input.tenant_id:
            record_activity_failed(name, "extraction not found")
            raise ApplicationError(
                f"Document extraction not found: {input.extraction_id}",
                type="ExtractionNotFound",
                non_retryable=True,
            )

        if extraction.document_type not in INVOICE_DOCUMENT_TYPES:
            activity.logger.info(f"Skipping non-invoice document type: {extraction.document_type}")
            record_activity_completed(name, (time.time() - start) * 1000)
            return ProcessInvoiceSupplierOutput(skipped=True, reason=ProcessingNotes.NOT_INVOICE)

        request = build_supplier_request(
            extraction.id, extraction.extracted_fields, input.tenant_id, input.user_id,
        )
        if request is None:
            activity.logger.warning(f"No vendor name on extraction {extraction.id}")
            with services.database.transaction() as conn:
                repository.update_supplier_match(
                    conn, extraction.id, None,
                    ConfidenceScores.INSUFFICIENT_DATA, ProcessingNotes.INSUFFICIENT_DATA,
                )
            record_activity_completed(name, (time.time() - start) * 1000)
            return ProcessInvoiceSupplierOutput(skipped=True, reason=ProcessingNotes.INSUFFICIENT_DATA)

        result = services.orchestrator.ingest(request)

        if result.action == IngestionAction.FAILED:
            record_activity_failed(name, result.error)
            # Storage errors are transient from the workflow's point of view
            raise ApplicationError(
                f"Supplier ingestion failed: {result.error}",
                type="PersistenceError",
            )

        if result.action == IngestionAction.CREATED:
            supplier_id, confidence, notes = (
                result.supplier_id, ConfidenceScores.SUPPLIER_CREATED, ProcessingNotes.SUPPLIER_CREATED,
            )
        elif result.action == IngestionAction.MATCHED:
            supplier_id, confidence, notes = (
                result.supplier_id, result.confidence, ProcessingNotes.SUPPLIER_MATCHED,
            )
        else:
            supplier_id, confidence, notes = (
                None, result.confidence, _SKIP_NOTES.get(result.reason, ProcessingNotes.ERROR),
            )

        with services.database.transaction() as conn:
            repository.update_supplier_match(conn, extraction.id, supplier_id, confidence, notes)

    activity.logger.info(f"Invoice supplier: {result.action.value} supplier={supplier_id} ({notes})")
    record_activity_completed(name, (time.time() - start) * 1000)
    return ProcessInvoiceSupplierOutput(
        skipped=result.action == IngestionAction.SKIPPED,
        action=result.action.value,
        supplier_id=supplier_id,
        confidence=confidence,
        reason=notes,
    )


ALL_ACTIVITIES: List = [
    check_file_duplicate,
    check_invoice_duplicate,
    ingest_supplier,
    process_invoice_supplier,
]
