"""Dedup - File and invoice duplicate detection within a tenant.

This package decides whether an incoming file or extracted invoice is
already known:
- Content hashing and invoice fingerprints (pure, no I/O)
- Pairwise similarity scoring with tunable weights
- Exact byte-identical file detection
- Exact / likely / possible / unique invoice classification

Usage:
    from core.storage import Database
    from dedup import DEDUP_SCHEMA, ExtractedFields, InvoiceDuplicateDetector

    db = Database("resolution.db")
    db.init_schema(DEDUP_SCHEMA)

    detector = InvoiceDuplicateDetector(db)
    verdict = detector.check_invoice_duplicate(
        ExtractedFields.from_mapping(raw_fields),
        tenant_id="t-001",
    )
    if verdict.is_duplicate:
        print(verdict.duplicate_type, verdict.confidence)
"""

from dedup.models import (
    DedupConfig,
    DeduplicationThresholds,
    DuplicateStatus,
    DuplicateType,
    ExtractedFields,
    ExtractionRecord,
    FieldValue,
    FileDuplicateVerdict,
    FileRecord,
    FileRegistration,
    FileSource,
    InvoiceDuplicateVerdict,
    ProcessDecision,
    ScoreBreakdown,
    ScoringWeights,
)
from dedup.hashing import composite_hash, invoice_fingerprint, sha256
from dedup.scoring import (
    amount_match,
    date_proximity,
    invoice_number_match,
    overall_score,
    vendor_similarity,
)
from dedup.db import DEDUP_SCHEMA, DedupRepository
from dedup.file_detector import FileDuplicateDetector
from dedup.invoice_detector import InvoiceDuplicateDetector, classify_score
from dedup.pipeline import DeduplicationOutcome, DeduplicationPipeline

__all__ = [
    # Models
    "DedupConfig",
    "DeduplicationThresholds",
    "DuplicateStatus",
    "DuplicateType",
    "ExtractedFields",
    "ExtractionRecord",
    "FieldValue",
    "FileDuplicateVerdict",
    "FileRecord",
    "FileRegistration",
    "FileSource",
    "InvoiceDuplicateVerdict",
    "ProcessDecision",
    "ScoreBreakdown",
    "ScoringWeights",
    # Hashing
    "composite_hash",
    "invoice_fingerprint",
    "sha256",
    # Scoring
    "amount_match",
    "date_proximity",
    "invoice_number_match",
    "overall_score",
    "vendor_similarity",
    # Detection
    "DEDUP_SCHEMA",
    "DedupRepository",
    "FileDuplicateDetector",
    "InvoiceDuplicateDetector",
    "classify_score",
    "DeduplicationOutcome",
    "DeduplicationPipeline",
]
