"""Supplier Resolver Data Models.

This module defines the Pydantic models for supplier resolution:
- Supplier / SupplierAttribute: the canonical vendor and its attribute ledger
- SupplierIngestionRequest / IngestionResult: the orchestrator's contract
- MatchResult / SupplierCandidate: what the matcher decided and why
- MatchingConfig: tunable floors, margins and primary ranking policy
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


class SupplierStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class DataSource(str, Enum):
    """Where supplier evidence came from."""
    INVOICE = "invoice"
    MANUAL = "manual"


class AttributeType(str, Enum):
    """Tag for the payload carried by a SupplierAttribute."""
    ADDRESS = "address"
    PHONE = "phone"
    EMAIL = "email"
    WEBSITE = "website"
    BANK_ACCOUNT = "bank_account"
    COMPANY_NUMBER = "company_number"
    VAT_NUMBER = "vat_number"


class ContactType(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    WEBSITE = "website"


# =============================================================================
# Ingestion payload
# =============================================================================

class Identifiers(BaseModel):
    company_number: Optional[str] = None
    vat_number: Optional[str] = None


class Address(BaseModel):
    line1: str
    line2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = Field(default=None, description="ISO 3166-1 alpha-2")


class Contact(BaseModel):
    type: ContactType
    value: str
    is_primary: bool = False


class BankAccount(BaseModel):
    """Bank details; identity is the IBAN, else sort code + account number."""
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    sort_code: Optional[str] = None
    iban: Optional[str] = None
    bank_name: Optional[str] = None


class SupplierIngestionData(BaseModel):
    name: Optional[str] = None
    identifiers: Identifiers = Field(default_factory=Identifiers)
    addresses: List[Address] = Field(default_factory=list)
    contacts: List[Contact] = Field(default_factory=list)
    bank_accounts: List[BankAccount] = Field(default_factory=list)


class SupplierIngestionRequest(BaseModel):
    """One piece of supplier evidence from a document or manual entry.

    Attributes:
        tenant_id: Isolation boundary
        source: invoice or manual
        source_id: External reference (e.g. the extraction id)
        user_id: Who triggered the ingestion, if anyone
        data: Name, identifiers, addresses, contacts and bank accounts
        confidence: Attribute confidence override (0-100); defaults by source
    """
    tenant_id: str
    source: DataSource
    source_id: str
    user_id: Optional[str] = None
    data: SupplierIngestionData
    confidence: Optional[int] = Field(default=None, ge=0, le=100)


class IngestionAction(str, Enum):
    CREATED = "created"
    MATCHED = "matched"
    SKIPPED = "skipped"
    FAILED = "failed"


class IngestionResult(BaseModel):
    """What happened to one ingestion request.

    ``skipped`` means a human should look at it; ``failed`` means the system
    could not complete it.
    """
    success: bool
    action: IngestionAction
    supplier_id: Optional[str] = None
    confidence: float = 0.0
    reason: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# Matching
# =============================================================================

class MatchOutcome(str, Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    LOW_CONFIDENCE = "low_confidence"
    NO_MATCH = "no_match"
    INSUFFICIENT_DATA = "insufficient_data"


class MatchMethod(str, Enum):
    COMPANY_NUMBER = "company_number"
    VAT_NUMBER = "vat_number"
    EXACT_NAME = "exact_name"
    FUZZY_NAME = "fuzzy_name"


class SupplierCandidate(BaseModel):
    supplier_id: str
    matched_name: str
    score: float = Field(..., ge=0.0, le=1.0)


class MatchResult(BaseModel):
    """The matcher's decision for one vendor reference."""
    outcome: MatchOutcome
    supplier_id: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    method: Optional[MatchMethod] = None
    reason: str = ""
    normalized_name: str = ""
    candidates: List[SupplierCandidate] = Field(default_factory=list)

    @property
    def action(self) -> IngestionAction:
        """What the orchestrator should do with this result."""
        if self.outcome == MatchOutcome.MATCHED:
            return IngestionAction.MATCHED
        if self.outcome == MatchOutcome.NO_MATCH:
            return IngestionAction.CREATED
        return IngestionAction.SKIPPED


class RankingField(str, Enum):
    """Columns that primary arbitration can rank by."""
    CONFIDENCE = "confidence"
    SEEN_COUNT = "seen_count"
    LAST_SEEN_AT = "last_seen_at"


DEFAULT_PRIMARY_RANKING: Tuple[RankingField, ...] = (
    RankingField.CONFIDENCE,
    RankingField.SEEN_COUNT,
    RankingField.LAST_SEEN_AT,
)


class MatchingConfig(BaseModel):
    """Configuration for supplier matching and the attribute ledger."""
    # Best fuzzy score needed to auto-match
    match_floor: float = Field(default=0.85, ge=0.0, le=1.0)
    # Below this, treat as no match at all (create); between this and match_floor, review
    review_floor: float = Field(default=0.70, ge=0.0, le=1.0)
    # A second supplier within this margin of the best makes the match ambiguous
    tie_margin: float = Field(default=0.05, ge=0.0, le=1.0)
    min_name_length: int = Field(default=2, ge=1)

    max_slug_attempts: int = Field(default=100, ge=1)
    repeat_increment: int = Field(default=5, ge=0, le=100)
    primary_ranking: Tuple[RankingField, ...] = DEFAULT_PRIMARY_RANKING

    @model_validator(mode="after")
    def _check_floors(self) -> "MatchingConfig":
        if self.review_floor > self.match_floor:
            raise ValueError("review_floor must not exceed match_floor")
        if not self.primary_ranking:
            raise ValueError("primary_ranking needs at least one field")
        return self


DEFAULT_MATCHING_CONFIG = MatchingConfig()


# =============================================================================
# Persisted entities
# =============================================================================

class Supplier(BaseModel):
    """Canonical vendor identity within a tenant."""
    id: str
    tenant_id: str
    legal_name: str
    display_name: str
    slug: str
    normalized_name: str
    company_number: Optional[str] = None
    vat_number: Optional[str] = None
    status: SupplierStatus = SupplierStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class SupplierAttribute(BaseModel):
    """One versioned fact about a supplier.

    At most one row exists per (supplier_id, attribute_type, hash); at most
    one active row per (supplier_id, attribute_type) is primary.
    """
    id: str
    supplier_id: str
    attribute_type: AttributeType
    value: Dict[str, Any]
    hash: str
    source: DataSource
    source_id: Optional[str] = None
    confidence: int = Field(..., ge=0, le=100)
    is_primary: bool = False
    is_active: bool = True
    first_seen_at: datetime
    last_seen_at: datetime
    seen_count: int = Field(default=1, ge=1)
    created_by: Optional[str] = None


class AttributeRecordResult(BaseModel):
    """Outcome of recording one observation in the ledger."""
    attribute: SupplierAttribute
    created: bool
    primary_changed: bool = False
