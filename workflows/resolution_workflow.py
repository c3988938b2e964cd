"""
Document Resolution Workflow

Per-extraction workflow:
CHECK_INVOICE_DUPLICATE → PROCESS_INVOICE_SUPPLIER

Exact and likely duplicates stop after the duplicate check; possible
duplicates continue and are left for review.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.resolution import (
        TASK_QUEUE,
        CheckInvoiceDuplicateInput,
        ProcessInvoiceSupplierInput,
        check_invoice_duplicate,
        process_invoice_supplier,
    )


@dataclass
class DocumentResolutionInput:
    tenant_id: str
    extraction_id: str
    user_id: Optional[str] = None


@dataclass
class DocumentResolutionOutput:
    extraction_id: str
    duplicate_type: str
    duplicate_extraction_id: Optional[str] = None
    supplier_action: Optional[str] = None
    supplier_id: Optional[str] = None
    notes: Optional[str] = None


@workflow.defn
class DocumentResolutionWorkflow:
    """Deduplicate an extraction, then resolve its supplier."""

    @workflow.run
    async def run(self, input: DocumentResolutionInput) -> DocumentResolutionOutput:
        activity_options = {
            "start_to_close_timeout": timedelta(seconds=60),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                maximum_interval=timedelta(seconds=10),
                backoff_coefficient=2.0,
                non_retryable_error_types=["ExtractionNotFound"],
            ),
            "task_queue": TASK_QUEUE,
        }

        verdict = await workflow.execute_activity(
            check_invoice_duplicate,
            CheckInvoiceDuplicateInput(tenant_id=input.tenant_id, extraction_id=input.extraction_id),
            **activity_options,
        )

        if verdict.duplicate_type in ("exact", "likely"):
            workflow.logger.info(
                f"Extraction {input.extraction_id} is a {verdict.duplicate_type} duplicate, skipping supplier"
            )
            return DocumentResolutionOutput(
                extraction_id=input.extraction_id,
                duplicate_type=verdict.duplicate_type,
                duplicate_extraction_id=verdict.duplicate_extraction_id,
            )

        supplier = await workflow.execute_activity(
            process_invoice_supplier,
            ProcessInvoiceSupplierInput(
                tenant_id=input.tenant_id,
                extraction_id=input.extraction_id,
                user_id=input.user_id,
            ),
            **activity_options,
        )

        return DocumentResolutionOutput(
            extraction_id=input.extraction_id,
            duplicate_type=verdict.duplicate_type,
            duplicate_extraction_id=verdict.duplicate_extraction_id,
            supplier_action=supplier.action,
            supplier_id=supplier.supplier_id,
            notes=supplier.reason,
        )
