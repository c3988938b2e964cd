"""Shared fixtures: a fresh SQLite database per test and clean metrics."""

from datetime import datetime, timedelta, timezone

import pytest

from core.observability.metrics import MetricsCollector
from core.storage import Database
from dedup import DEDUP_SCHEMA, DedupRepository, ExtractedFields
from supplier_resolver import SUPPLIER_SCHEMA


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "resolution.db")
    database.init_schema(DEDUP_SCHEMA, SUPPLIER_SCHEMA)
    return database


@pytest.fixture(autouse=True)
def clean_metrics():
    MetricsCollector.instance().reset()
    yield
    MetricsCollector.instance().reset()


@pytest.fixture
def adobe_invoice():
    """Extracted fields of a small Adobe invoice, in the extractor's envelope format."""
    return {
        "vendorName": {"value": "Adobe Systems", "confidence": 0.98},
        "invoiceNumber": {"value": "INV-100", "confidence": 0.95},
        "documentDate": {"value": "2024-01-15", "confidence": 0.9},
        "totalAmount": {"value": 24.59, "confidence": 0.9},
        "currency": {"value": "GBP", "confidence": 0.9},
    }


@pytest.fixture
def store_extraction(db):
    """Persist an extraction and return its record."""
    repository = DedupRepository()

    def _store(fields, tenant_id="t1", document_type="invoice", extraction_id=None, age_days=0):
        with db.transaction() as conn:
            return repository.insert_extraction(
                conn,
                tenant_id,
                ExtractedFields.from_mapping(fields),
                document_type=document_type,
                extraction_id=extraction_id,
                created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
            )

    return _store
