"""
Observability Module for Identity Resolution

Provides:
- Structured logging with correlation IDs
- Metrics collection (duplicate verdicts, ingestion outcomes, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_file_check,
    record_invoice_check,
    record_supplier_action,
    record_conflict,
    record_attribute,
    record_activity_started,
    record_activity_completed,
    record_activity_failed,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_file_check",
    "record_invoice_check",
    "record_supplier_action",
    "record_conflict",
    "record_attribute",
    "record_activity_started",
    "record_activity_completed",
    "record_activity_failed",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
