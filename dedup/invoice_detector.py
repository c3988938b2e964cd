"""Invoice-level duplicate detection.

Classifies a newly extracted invoice against the tenant's prior invoices:

1. Identical fingerprint -> exact, confidence 1.0
2. Otherwise score the recent candidates that share a vendor, invoice
   number or similar total with it, and classify the best one against the
   configured thresholds (exact / likely / possible / unique).

Missing fields never raise; they contribute 0 to the score so sparse
extractions degrade confidence instead of failing.
"""

import sqlite3
import time
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_invoice_check, record_processing_time
from core.storage import Database
from dedup.db import DedupRepository
from dedup.hashing import invoice_fingerprint
from dedup.models import (
    DEFAULT_DEDUP_CONFIG,
    DedupConfig,
    DeduplicationThresholds,
    DuplicateStatus,
    DuplicateType,
    ExtractedFields,
    ExtractionRecord,
    InvoiceDuplicateVerdict,
    ScoreBreakdown,
)
from dedup.scoring import score_invoice_pair

logger = get_logger(__name__)


def classify_score(score: float, thresholds: DeduplicationThresholds) -> DuplicateType:
    """Map an overall score onto a duplicate type."""
    if score >= thresholds.certain:
        return DuplicateType.EXACT
    if score >= thresholds.likely:
        return DuplicateType.LIKELY
    if score >= thresholds.possible:
        return DuplicateType.POSSIBLE
    return DuplicateType.UNIQUE


def _exact_verdict(fingerprint: str, extraction_id: str) -> InvoiceDuplicateVerdict:
    return InvoiceDuplicateVerdict(
        is_duplicate=True,
        duplicate_extraction_id=extraction_id,
        fingerprint=fingerprint,
        duplicate_type=DuplicateType.EXACT,
        confidence=1.0,
        score_breakdown=ScoreBreakdown(
            vendor_match=1.0,
            invoice_number_match=1.0,
            date_proximity=1.0,
            amount_match=1.0,
            overall_score=1.0,
        ),
    )


def has_identity(fields: ExtractedFields) -> bool:
    """An invoice with no vendor, number or amount has nothing to fingerprint."""
    return any(
        fields.value_of(name) not in (None, "")
        for name in ("vendor_name", "invoice_number", "total_amount")
    )


def scoring_view(fields: ExtractedFields) -> Dict[str, Any]:
    """The four factors scored between two invoices."""
    return {
        "vendor_name": fields.value_of("vendor_name"),
        "invoice_number": fields.value_of("invoice_number"),
        "invoice_date": fields.value_of("document_date"),
        "total_amount": fields.value_of("total_amount"),
    }


class InvoiceDuplicateDetector:
    """Classifies extracted invoices as exact, likely, possible or unique duplicates.

    Example:
        detector = InvoiceDuplicateDetector(Database("resolution.db"))
        verdict = detector.check_invoice_duplicate(
            extraction_id=extraction.id,
            extracted_fields=extraction.extracted_fields,
            tenant_id="t-001",
        )
        detector.update_duplicate_status(extraction.id, verdict)
    """

    def __init__(
        self,
        database: Database,
        config: DedupConfig = DEFAULT_DEDUP_CONFIG,
        repository: Optional[DedupRepository] = None,
    ):
        self.database = database
        self.config = config
        self.repository = repository or DedupRepository()

    def fingerprint(self, fields: ExtractedFields) -> str:
        return invoice_fingerprint(
            fields.value_of("vendor_name"),
            fields.value_of("invoice_number"),
            fields.value_of("document_date"),
            fields.value_of("total_amount"),
            fields.value_of("currency") or self.config.default_currency,
        )

    def check_invoice_duplicate(
        self,
        extracted_fields: ExtractedFields,
        tenant_id: str,
        extraction_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> InvoiceDuplicateVerdict:
        """Classify an extraction against prior invoices in the tenant.

        Args:
            extracted_fields: Fields of the new document
            tenant_id: Isolation boundary
            extraction_id: The new extraction's id if already persisted (excluded from candidates)
            conn: Join an open unit of work

        Returns:
            InvoiceDuplicateVerdict for the best-matching prior invoice
        """
        start = time.time()
        fingerprint = self.fingerprint(extracted_fields)

        with with_correlation(tenant_id=tenant_id, extraction_id=extraction_id):
            with self.database.connection(conn) as c:
                exact = None
                if has_identity(extracted_fields):
                    exact = self.repository.find_by_fingerprint(c, tenant_id, fingerprint, extraction_id)
                candidates: List[ExtractionRecord] = []
                if exact is None:
                    candidates = self.repository.find_candidate_extractions(
                        c,
                        tenant_id,
                        exclude_extraction_id=extraction_id,
                        limit=self.config.candidate_limit,
                        window_days=self.config.candidate_window_days,
                        extracted_fields=extracted_fields,
                        amount_band=self.config.candidate_amount_band,
                    )

            if exact is not None:
                verdict = _exact_verdict(fingerprint, exact.id)
                logger.info("Exact invoice duplicate by fingerprint", extra_fields={
                    "duplicate_extraction_id": exact.id,
                })
            else:
                verdict = self._score_candidates(extracted_fields, fingerprint, candidates)

        record_invoice_check(verdict.duplicate_type.value)
        record_processing_time("dedup.invoice_check", (time.time() - start) * 1000)
        return verdict

    def _score_candidates(
        self,
        extracted_fields: ExtractedFields,
        fingerprint: str,
        candidates: List[ExtractionRecord],
    ) -> InvoiceDuplicateVerdict:
        new_view = scoring_view(extracted_fields)
        identifiable = has_identity(extracted_fields)
        weights = self.config.weights.as_dict()

        best: Optional[ExtractionRecord] = None
        best_breakdown: Optional[ScoreBreakdown] = None
        for candidate in candidates:
            # Older rows may never have been stamped with a fingerprint
            if identifiable and self.fingerprint(candidate.extracted_fields) == fingerprint:
                logger.info("Exact invoice duplicate by recomputed fingerprint", extra_fields={
                    "duplicate_extraction_id": candidate.id,
                })
                return _exact_verdict(fingerprint, candidate.id)

            breakdown = score_invoice_pair(
                new_view,
                scoring_view(candidate.extracted_fields),
                weights=weights,
                tolerance_days=self.config.date_tolerance_days,
                amount_tolerance=self.config.amount_tolerance,
            )
            if best_breakdown is None or breakdown.overall_score > best_breakdown.overall_score:
                best, best_breakdown = candidate, breakdown

        if best is None:
            logger.info("No prior invoices to compare against")
            return InvoiceDuplicateVerdict(
                is_duplicate=False,
                fingerprint=fingerprint,
                duplicate_type=DuplicateType.UNIQUE,
                confidence=0.0,
            )

        duplicate_type = classify_score(best_breakdown.overall_score, self.config.thresholds)
        is_duplicate = duplicate_type != DuplicateType.UNIQUE

        logger.info("Invoice candidates scored", extra_fields={
            "candidates": len(candidates),
            "best_candidate_id": best.id,
            "overall_score": round(best_breakdown.overall_score, 4),
            "duplicate_type": duplicate_type.value,
        })

        return InvoiceDuplicateVerdict(
            is_duplicate=is_duplicate,
            duplicate_extraction_id=best.id if is_duplicate else None,
            fingerprint=fingerprint,
            duplicate_type=duplicate_type,
            confidence=best_breakdown.overall_score,
            score_breakdown=best_breakdown,
        )

    def update_duplicate_status(
        self,
        extraction_id: str,
        verdict: InvoiceDuplicateVerdict,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """Stamp the verdict (fingerprint, status, confidence, candidate) on an extraction."""
        status = DuplicateStatus.from_duplicate_type(verdict.duplicate_type)

        with self.database.unit_of_work(conn) as c:
            self.repository.update_duplicate_status(
                c, extraction_id, verdict.fingerprint, status,
                verdict.confidence, verdict.duplicate_extraction_id,
            )

        logger.info("Updated extraction duplicate status", extra_fields={
            "extraction_id": extraction_id,
            "duplicate_status": status.value,
            "duplicate_confidence": verdict.confidence,
        })

    def get_duplicate_chain(self, extraction_id: str) -> List[ExtractionRecord]:
        """All extractions sharing this one's fingerprint, oldest first."""
        with self.database.read() as conn:
            return self.repository.get_duplicate_chain(conn, extraction_id)
