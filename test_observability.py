"""
Observability Validation Test

This test validates the observability stack:
1. Metrics collection works (dedup verdicts, supplier actions, activities, timings)
2. Structured logging with correlation IDs works
3. Correlation context flows through a supplier ingestion

Pass criteria: from one log line you can tell which tenant, document and
supplier a resolution decision was about.
"""

import json
import logging

import pytest


def test_observability_imports():
    """Verify all observability modules import correctly."""
    from core.observability import (
        MetricsCollector, get_metrics,
        record_file_check, record_invoice_check,
        record_supplier_action, record_conflict, record_attribute,
        record_activity_started, record_activity_completed, record_activity_failed,
        record_processing_time,
        get_logger, configure_logging, CorrelationContext, with_correlation,
    )
    assert MetricsCollector is not None
    assert get_metrics is not None
    assert CorrelationContext is not None


class TestMetricsCollector:
    """Test the metrics collection system."""

    def test_singleton_instance(self):
        """MetricsCollector returns same instance."""
        from core.observability.metrics import MetricsCollector
        m1 = MetricsCollector.instance()
        m2 = MetricsCollector.instance()
        assert m1 is m2

    def test_dedup_metrics_tracking(self):
        """Track file checks and invoice verdicts by type."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        mc.record_file_check(True)
        mc.record_file_check(False)
        mc.record_invoice_check("exact")
        mc.record_invoice_check("possible")
        mc.record_invoice_check("possible")

        dedup = mc.get_summary()["dedup"]
        assert dedup["file_checks"] == 2
        assert dedup["file_duplicates"] == 1
        assert dedup["invoice_checks"] == 3
        assert dedup["invoice_by_type"] == {"exact": 1, "possible": 2}

    def test_supplier_metrics_tracking(self):
        """Track ingestion actions, conflicts and primary changes."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        mc.record_supplier_action("created")
        mc.record_supplier_action("matched")
        mc.record_supplier_action("matched")
        mc.record_conflict()
        mc.record_attribute(primary_changed=True)
        mc.record_attribute(primary_changed=False)

        suppliers = mc.get_summary()["suppliers"]
        assert suppliers["by_action"] == {"created": 1, "matched": 2}
        assert suppliers["conflicts"] == 1
        assert suppliers["attributes_recorded"] == 2
        assert suppliers["primary_changes"] == 1

    def test_activity_metrics_tracking(self):
        """Track activity started/completed/failed counts."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        mc.record_activity_started("check_invoice_duplicate")
        mc.record_activity_completed("check_invoice_duplicate", duration_ms=100)
        mc.record_activity_started("ingest_supplier")
        mc.record_activity_failed("ingest_supplier", error="disk full")

        summary = mc.get_summary()
        assert summary["activities"]["started"] == 2
        assert summary["activities"]["completed"] == 1
        assert summary["activities"]["failed"] == 1
        assert summary["activities"]["by_name"]["ingest_supplier"]["failed"] == 1
        assert "activity.check_invoice_duplicate" in summary["timings"]["by_stage"]

    def test_timing_percentile_calculation(self):
        """Calculate p95 timing correctly."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        for i in range(1, 101):
            mc.record_processing_time("supplier_match", i)

        stats = mc.get_timing_stats("supplier_match")

        assert stats["average_ms"] == pytest.approx(50.5)
        assert stats["p95_ms"] == 96
        assert stats["sample_count"] == 100

    def test_reset(self):
        """Reset drops everything collected so far."""
        from core.observability.metrics import MetricsCollector
        mc = MetricsCollector.instance()

        mc.record_supplier_action("created")
        mc.reset()

        assert mc.get_summary()["suppliers"]["by_action"] == {}


class TestCorrelatedLogging:
    """Test structured logging with correlation IDs."""

    def test_correlation_context_creation(self):
        """Create correlation context with all fields."""
        from core.observability.logging import CorrelationContext

        ctx = CorrelationContext(
            tenant_id="t-001",
            extraction_id="ext-42",
            supplier_id="sup-7",
            source="invoice",
            source_id="ext-42",
            activity_name="ingest_supplier",
        )

        assert ctx.tenant_id == "t-001"
        assert ctx.to_dict()["supplier_id"] == "sup-7"
        assert "file_id" not in ctx.to_dict()

    def test_context_var_isolation(self):
        """with_correlation nests and restores the previous context."""
        from core.observability.logging import get_correlation_context, with_correlation

        assert get_correlation_context().tenant_id is None

        with with_correlation(tenant_id="t-001"):
            with with_correlation(supplier_id="sup-7"):
                inner_ctx = get_correlation_context()
                assert inner_ctx.tenant_id == "t-001"
                assert inner_ctx.supplier_id == "sup-7"
            assert get_correlation_context().supplier_id is None

        assert get_correlation_context().tenant_id is None

    def test_structured_formatter_json_output(self):
        """StructuredFormatter outputs valid JSON with context and extra fields."""
        from core.observability.logging import StructuredFormatter, with_correlation

        formatter = StructuredFormatter()

        with with_correlation(tenant_id="t-001", source_id="ext-42"):
            record = logging.LogRecord(
                name="test",
                level=logging.INFO,
                pathname="test.py",
                lineno=10,
                msg="Supplier matched",
                args=(),
                exc_info=None,
            )
            record.extra_fields = {"confidence": 0.95}

            data = json.loads(formatter.format(record))

        assert data["message"] == "Supplier matched"
        assert data["tenant_id"] == "t-001"
        assert data["source_id"] == "ext-42"
        assert data["confidence"] == 0.95

    def test_human_readable_formatter(self):
        """HumanReadableFormatter shows tenant, source and supplier."""
        from core.observability.logging import HumanReadableFormatter, with_correlation

        formatter = HumanReadableFormatter()

        with with_correlation(tenant_id="t-001", source_id="ext-42", supplier_id="abcdef123456"):
            record = logging.LogRecord("test", logging.INFO, "test.py", 10, "Matched", (), None)
            output = formatter.format(record)

        assert "[t-001/src:ext-42/sup:abcdef12]" in output
        assert output.endswith("Matched")

    def test_correlated_logger_passes_extra_fields(self):
        """CorrelatedLogger attaches extra_fields to the record."""
        from core.observability.logging import get_logger

        captured = []

        class Capture(logging.Handler):
            def emit(self, record):
                captured.append(record)

        logger = get_logger("test.correlated")
        underlying = logging.getLogger("test.correlated")
        handler = Capture()
        underlying.addHandler(handler)
        underlying.setLevel(logging.INFO)
        try:
            logger.info("Attribute recorded", extra_fields={"seen_count": 2})
        finally:
            underlying.removeHandler(handler)

        assert captured[0].getMessage() == "Attribute recorded"
        assert captured[0].extra_fields == {"seen_count": 2}


class TestIngestionCorrelation:
    """Logs emitted during an ingestion carry its tenant and source."""

    def test_ingestion_logs_are_correlated(self, db):
        from core.observability.logging import StructuredFormatter
        from supplier_resolver import SupplierIngestionOrchestrator
        from supplier_resolver.models import DataSource, SupplierIngestionData, SupplierIngestionRequest

        formatter = StructuredFormatter()
        lines = []

        class Capture(logging.Handler):
            def emit(self, record):
                lines.append(json.loads(formatter.format(record)))

        underlying = logging.getLogger("supplier_resolver.ingestion")
        handler = Capture()
        underlying.addHandler(handler)
        underlying.setLevel(logging.INFO)
        try:
            SupplierIngestionOrchestrator(db).ingest(SupplierIngestionRequest(
                tenant_id="t-001",
                source=DataSource.INVOICE,
                source_id="ext-42",
                data=SupplierIngestionData(name="Acme Widgets Ltd"),
            ))
        finally:
            underlying.removeHandler(handler)

        summary = next(line for line in lines if line["message"] == "Supplier ingestion created")
        assert summary["tenant_id"] == "t-001"
        assert summary["source"] == "invoice"
        assert summary["source_id"] == "ext-42"
        assert summary["supplier_id"]
