"""Two-stage deduplication for an uploaded document.

Stage 1 hashes the file and stops if its bytes are already known. Stage 2,
when extracted fields are available, classifies the invoice and stamps the
verdict on the extraction. Exact and likely invoice duplicates are not
processed further; possible duplicates are processed and left for review.
"""

from typing import Optional

from pydantic import BaseModel

from core.observability.logging import get_logger, with_correlation
from dedup.file_detector import FileDuplicateDetector
from dedup.invoice_detector import InvoiceDuplicateDetector
from dedup.models import (
    DuplicateType,
    ExtractedFields,
    FileDuplicateVerdict,
    FileSource,
    InvoiceDuplicateVerdict,
)

logger = get_logger(__name__)


class DeduplicationOutcome(BaseModel):
    file_verdict: FileDuplicateVerdict
    invoice_verdict: Optional[InvoiceDuplicateVerdict] = None
    should_process: bool


class DeduplicationPipeline:
    """Runs file then invoice duplicate detection for one document."""

    def __init__(self, file_detector: FileDuplicateDetector, invoice_detector: InvoiceDuplicateDetector):
        self.file_detector = file_detector
        self.invoice_detector = invoice_detector

    def run(
        self,
        file_id: str,
        content: bytes,
        tenant_id: str,
        source: FileSource,
        source_id: Optional[str] = None,
        extracted_fields: Optional[ExtractedFields] = None,
        extraction_id: Optional[str] = None,
    ) -> DeduplicationOutcome:
        with with_correlation(tenant_id=tenant_id, file_id=file_id, extraction_id=extraction_id):
            content_hash = self.file_detector.calculate_and_store_file_hash(file_id, content)
            file_verdict = self.file_detector.check_file_duplicate(
                tenant_id=tenant_id,
                source=source,
                content_hash=content_hash,
                file_size=len(content),
                source_id=source_id,
                exclude_file_id=file_id,
            )

            if file_verdict.is_duplicate:
                logger.info("File is exact duplicate, skipping processing", extra_fields={
                    "duplicate_file_id": file_verdict.duplicate_file_id,
                })
                return DeduplicationOutcome(file_verdict=file_verdict, should_process=False)

            if extracted_fields is None or extraction_id is None:
                return DeduplicationOutcome(file_verdict=file_verdict, should_process=True)

            invoice_verdict = self.invoice_detector.check_invoice_duplicate(
                extracted_fields, tenant_id, extraction_id=extraction_id,
            )
            self.invoice_detector.update_duplicate_status(extraction_id, invoice_verdict)

            should_process = invoice_verdict.duplicate_type in (DuplicateType.UNIQUE, DuplicateType.POSSIBLE)
            if not should_process:
                logger.info("Invoice is a duplicate, skipping processing", extra_fields={
                    "duplicate_type": invoice_verdict.duplicate_type.value,
                    "duplicate_extraction_id": invoice_verdict.duplicate_extraction_id,
                })

            return DeduplicationOutcome(
                file_verdict=file_verdict,
                invoice_verdict=invoice_verdict,
                should_process=should_process,
            )
