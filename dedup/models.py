"""Deduplication Data Models.

This module defines the Pydantic models for file and invoice deduplication:
- FileRecord / FileDuplicateVerdict: byte-identical file detection
- FieldValue / ExtractedFields: the typed view of an extraction's fields
- ExtractionRecord / InvoiceDuplicateVerdict: invoice-level detection
- DeduplicationThresholds / ScoringWeights / DedupConfig: tunable knobs
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


# Document types that carry invoice identity fields
INVOICE_DOCUMENT_TYPES = ("invoice", "receipt", "purchase_order")


class FileSource(str, Enum):
    """Where an uploaded file came from."""
    INTEGRATION = "integration"
    USER_UPLOAD = "user_upload"
    WHATSAPP = "whatsapp"
    SLACK = "slack"


class DuplicateType(str, Enum):
    """How confidently an invoice matches a prior one."""
    EXACT = "exact"
    LIKELY = "likely"
    POSSIBLE = "possible"
    UNIQUE = "unique"

    @property
    def rank(self) -> int:
        """Ordering used for comparisons (higher = more certain duplicate)."""
        return _DUPLICATE_RANKS[self]


_DUPLICATE_RANKS = {
    DuplicateType.UNIQUE: 0,
    DuplicateType.POSSIBLE: 1,
    DuplicateType.LIKELY: 2,
    DuplicateType.EXACT: 3,
}


class DuplicateStatus(str, Enum):
    """Status stamped onto a document extraction."""
    DUPLICATE = "duplicate"
    POSSIBLE_DUPLICATE = "possible_duplicate"
    UNIQUE = "unique"

    @classmethod
    def from_duplicate_type(cls, duplicate_type: DuplicateType) -> "DuplicateStatus":
        if duplicate_type == DuplicateType.EXACT:
            return cls.DUPLICATE
        if duplicate_type in (DuplicateType.LIKELY, DuplicateType.POSSIBLE):
            return cls.POSSIBLE_DUPLICATE
        return cls.UNIQUE


# =============================================================================
# Files
# =============================================================================

class FileRecord(BaseModel):
    """A tenant-scoped binary artifact.

    Within a tenant, (content_hash, file_size, source, source_id) identifies
    at most one canonical file.
    """
    id: str
    tenant_id: str
    file_name: Optional[str] = None
    content_hash: Optional[str] = Field(default=None, description="SHA-256 over raw bytes")
    file_size: int = Field(..., ge=0)
    source: FileSource
    source_id: Optional[str] = Field(default=None, description="External reference")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FileDuplicateVerdict(BaseModel):
    """Result of a file-level duplicate check."""
    is_duplicate: bool
    duplicate_file_id: Optional[str] = None
    content_hash: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class FileRegistration(BaseModel):
    """Outcome of registering an upload: the canonical file and whether it is new."""
    file: FileRecord
    created: bool


class ProcessDecision(BaseModel):
    should_process: bool
    reason: Optional[str] = None
    duplicate_file_id: Optional[str] = None


# =============================================================================
# Extracted fields
# =============================================================================

class FieldValue(BaseModel):
    """One extracted value with its extraction confidence (0-1)."""
    value: Any = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    source: Optional[str] = None


# Logical field -> accepted raw keys, canonical key first
KNOWN_FIELD_KEYS: Dict[str, Tuple[str, ...]] = {
    "vendor_name": ("vendorName", "supplierName", "vendor_name"),
    "invoice_number": ("invoiceNumber", "invoiceNo", "invoice_number"),
    "document_date": ("documentDate", "invoiceDate", "date", "document_date", "invoice_date"),
    "total_amount": ("totalAmount", "total", "total_amount"),
    "currency": ("currency",),
    "vendor_company_number": ("vendorCompanyNumber", "companyNumber"),
    "vendor_vat_number": ("vendorVatNumber", "vatNumber", "vendorTaxId"),
    "vendor_address_line1": ("vendorAddressLine1", "vendorAddress"),
    "vendor_city": ("vendorCity",),
    "vendor_postal_code": ("vendorPostalCode", "vendorPostcode"),
    "vendor_country": ("vendorCountry",),
    "vendor_email": ("vendorEmail",),
    "vendor_phone": ("vendorPhone",),
    "vendor_website": ("vendorWebsite",),
    "bank_account": ("bankAccount",),
}


def _to_field_value(raw: Any) -> FieldValue:
    """Wrap a raw extraction entry ({value, confidence, source} or bare value)."""
    if isinstance(raw, FieldValue):
        return raw
    if isinstance(raw, Mapping) and "value" in raw:
        confidence = raw.get("confidence")
        if confidence is None:
            confidence = 1.0
        confidence = float(confidence)
        # Some extractors report percentages
        if 1.0 < confidence <= 100.0:
            confidence = confidence / 100.0
        return FieldValue(value=raw.get("value"), confidence=confidence, source=raw.get("source"))
    return FieldValue(value=raw)


class ExtractedFields(BaseModel):
    """Fixed-schema view of an extraction's field bag.

    Known fields are typed attributes; anything else is kept in ``extra``
    so nothing the extractor produced is lost.

    Usage:
        fields = ExtractedFields.from_mapping({
            "vendorName": {"value": "Adobe Systems", "confidence": 0.98},
            "invoiceNumber": {"value": "INV-100", "confidence": 0.95},
            "totalAmount": {"value": 24.59, "confidence": 0.9},
        })
        fields.value_of("vendor_name")  # "Adobe Systems"
    """
    vendor_name: Optional[FieldValue] = None
    invoice_number: Optional[FieldValue] = None
    document_date: Optional[FieldValue] = None
    total_amount: Optional[FieldValue] = None
    currency: Optional[FieldValue] = None
    vendor_company_number: Optional[FieldValue] = None
    vendor_vat_number: Optional[FieldValue] = None
    vendor_address_line1: Optional[FieldValue] = None
    vendor_city: Optional[FieldValue] = None
    vendor_postal_code: Optional[FieldValue] = None
    vendor_country: Optional[FieldValue] = None
    vendor_email: Optional[FieldValue] = None
    vendor_phone: Optional[FieldValue] = None
    vendor_website: Optional[FieldValue] = None
    bank_account: Optional[FieldValue] = None
    extra: Dict[str, FieldValue] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ExtractedFields":
        """Build from a raw extraction mapping, honouring key aliases."""
        if not data:
            return cls()

        known: Dict[str, FieldValue] = {}
        consumed = set()
        for field_name, keys in KNOWN_FIELD_KEYS.items():
            for key in keys:
                if key in data:
                    consumed.add(key)
                    if field_name not in known and data[key] is not None:
                        candidate = _to_field_value(data[key])
                        if candidate.value not in (None, ""):
                            known[field_name] = candidate

        extra = {
            key: _to_field_value(value)
            for key, value in data.items()
            if key not in consumed and value is not None
        }
        return cls(**known, extra=extra)

    def value_of(self, field_name: str) -> Any:
        """Return the raw value of a known field (or an extra key), else None."""
        if field_name in KNOWN_FIELD_KEYS:
            field_value = getattr(self, field_name)
        else:
            field_value = self.extra.get(field_name)
        return field_value.value if field_value is not None else None

    def to_mapping(self) -> Dict[str, Any]:
        """Serialize with canonical camelCase keys (storage format)."""
        result: Dict[str, Any] = {}
        for field_name, keys in KNOWN_FIELD_KEYS.items():
            field_value = getattr(self, field_name)
            if field_value is not None:
                result[keys[0]] = field_value.model_dump(mode="json")
        for key, field_value in self.extra.items():
            result[key] = field_value.model_dump(mode="json")
        return result


# =============================================================================
# Invoice verdicts
# =============================================================================

class ScoreBreakdown(BaseModel):
    """Per-factor similarity scores for the best candidate."""
    vendor_match: float = 0.0
    invoice_number_match: float = 0.0
    date_proximity: float = 0.0
    amount_match: float = 0.0
    overall_score: float = 0.0


class InvoiceDuplicateVerdict(BaseModel):
    """Result of an invoice-level duplicate check."""
    is_duplicate: bool
    duplicate_extraction_id: Optional[str] = None
    fingerprint: str
    duplicate_type: DuplicateType = DuplicateType.UNIQUE
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    score_breakdown: Optional[ScoreBreakdown] = None


class ExtractionRecord(BaseModel):
    """A persisted document extraction."""
    id: str
    tenant_id: str
    file_id: Optional[str] = None
    document_type: str = "invoice"
    extracted_fields: ExtractedFields = Field(default_factory=ExtractedFields)
    invoice_fingerprint: Optional[str] = None
    duplicate_status: Optional[DuplicateStatus] = None
    duplicate_confidence: Optional[float] = None
    duplicate_candidate_id: Optional[str] = None
    matched_supplier_id: Optional[str] = None
    match_confidence: Optional[float] = None
    processing_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# Configuration
# =============================================================================

class DeduplicationThresholds(BaseModel):
    """Score thresholds for classifying the best invoice candidate."""
    certain: float = Field(default=0.95, ge=0.0, le=1.0, description="At or above: exact")
    likely: float = Field(default=0.80, ge=0.0, le=1.0, description="At or above: likely")
    possible: float = Field(default=0.60, ge=0.0, le=1.0, description="At or above: possible")

    @model_validator(mode="after")
    def _check_order(self) -> "DeduplicationThresholds":
        if not (self.certain >= self.likely >= self.possible):
            raise ValueError("thresholds must satisfy certain >= likely >= possible")
        return self


class ScoringWeights(BaseModel):
    """Weights for the overall invoice similarity score.

    Renormalized by their sum, so they need not add up to 1.
    """
    vendor_name: float = Field(default=0.3, ge=0.0)
    invoice_number: float = Field(default=0.3, ge=0.0)
    invoice_date: float = Field(default=0.2, ge=0.0)
    total_amount: float = Field(default=0.2, ge=0.0)

    def as_dict(self) -> Dict[str, float]:
        return self.model_dump()


class DedupConfig(BaseModel):
    """Configuration for file and invoice duplicate detection."""
    thresholds: DeduplicationThresholds = Field(default_factory=DeduplicationThresholds)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    date_tolerance_days: int = Field(default=1, ge=0)
    amount_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)
    default_currency: str = Field(default="GBP", min_length=3, max_length=3)

    # Candidate window for similarity scoring: prior invoices sharing a vendor,
    # an invoice number or a total within the band, newest first
    candidate_limit: int = Field(default=10, ge=1)
    candidate_window_days: Optional[int] = Field(default=365, ge=1)
    candidate_amount_band: Decimal = Field(default=Decimal("0.05"), ge=0)


DEFAULT_DEDUP_CONFIG = DedupConfig()
