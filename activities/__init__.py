"""Activity definitions module."""

from activities.resolution import (
    check_file_duplicate,
    check_invoice_duplicate,
    ingest_supplier,
    process_invoice_supplier,
    configure_services,
    get_services,
    ALL_ACTIVITIES,
    TASK_QUEUE,
    CheckFileDuplicateInput,
    CheckFileDuplicateOutput,
    CheckInvoiceDuplicateInput,
    CheckInvoiceDuplicateOutput,
    IngestSupplierInput,
    IngestSupplierOutput,
    ProcessInvoiceSupplierInput,
    ProcessInvoiceSupplierOutput,
)

__all__ = [
    # Activities
    "check_file_duplicate",
    "check_invoice_duplicate",
    "ingest_supplier",
    "process_invoice_supplier",
    "ALL_ACTIVITIES",
    "TASK_QUEUE",
    # Wiring
    "configure_services",
    "get_services",
    # Inputs / outputs
    "CheckFileDuplicateInput",
    "CheckFileDuplicateOutput",
    "CheckInvoiceDuplicateInput",
    "CheckInvoiceDuplicateOutput",
    "IngestSupplierInput",
    "IngestSupplierOutput",
    "ProcessInvoiceSupplierInput",
    "ProcessInvoiceSupplierOutput",
]
