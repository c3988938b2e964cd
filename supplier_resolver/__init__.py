"""Supplier Resolver - Canonical supplier identity within a tenant.

This package resolves the vendor on a document to one supplier record and
keeps that supplier's attribute history:
- Identifier matching (company number, VAT number)
- Exact and fuzzy name matching against names and trading aliases
- Collision-free supplier creation under concurrent writers
- Attribute ledger with provenance, confidence and primary arbitration

Usage:
    from core.storage import Database
    from supplier_resolver import (
        SUPPLIER_SCHEMA,
        SupplierIngestionOrchestrator,
        build_supplier_request,
    )

    db = Database("resolution.db")
    db.init_schema(SUPPLIER_SCHEMA)

    request = build_supplier_request(extraction_id, extracted_fields, tenant_id="t-001")
    if request:
        result = SupplierIngestionOrchestrator(db).ingest(request)
        print(result.action, result.supplier_id)
"""

from supplier_resolver.constants import ConfidenceScores, DefaultConfidence, ProcessingNotes
from supplier_resolver.models import (
    Address,
    AttributeRecordResult,
    AttributeType,
    BankAccount,
    Contact,
    ContactType,
    DataSource,
    Identifiers,
    IngestionAction,
    IngestionResult,
    MatchingConfig,
    MatchMethod,
    MatchOutcome,
    MatchResult,
    RankingField,
    Supplier,
    SupplierAttribute,
    SupplierCandidate,
    SupplierIngestionData,
    SupplierIngestionRequest,
    SupplierStatus,
)
from supplier_resolver.normalize import generate_slug, normalize_supplier_name
from supplier_resolver.validator import SupplierValidator
from supplier_resolver.db import SUPPLIER_SCHEMA, SupplierRepository
from supplier_resolver.matcher import SupplierMatcher
from supplier_resolver.ledger import AttributeLedger
from supplier_resolver.ingestion import SupplierIngestionOrchestrator
from supplier_resolver.transform import build_supplier_request

__all__ = [
    # Constants
    "ConfidenceScores",
    "DefaultConfidence",
    "ProcessingNotes",
    # Models
    "Address",
    "AttributeRecordResult",
    "AttributeType",
    "BankAccount",
    "Contact",
    "ContactType",
    "DataSource",
    "Identifiers",
    "IngestionAction",
    "IngestionResult",
    "MatchingConfig",
    "MatchMethod",
    "MatchOutcome",
    "MatchResult",
    "RankingField",
    "Supplier",
    "SupplierAttribute",
    "SupplierCandidate",
    "SupplierIngestionData",
    "SupplierIngestionRequest",
    "SupplierStatus",
    # Normalization / validation
    "generate_slug",
    "normalize_supplier_name",
    "SupplierValidator",
    # Resolution
    "SUPPLIER_SCHEMA",
    "SupplierRepository",
    "SupplierMatcher",
    "AttributeLedger",
    "SupplierIngestionOrchestrator",
    "build_supplier_request",
]
