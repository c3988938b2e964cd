"""Tests for the Temporal activities and the document resolution workflow.

Activities run inside temporalio's ActivityEnvironment; the workflow is run
directly with activity execution patched out, so no Temporal server is needed.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from temporalio.exceptions import ApplicationError
from temporalio.testing import ActivityEnvironment

from activities.resolution import (
    CheckFileDuplicateInput,
    CheckInvoiceDuplicateInput,
    CheckInvoiceDuplicateOutput,
    IngestSupplierInput,
    ProcessInvoiceSupplierInput,
    ProcessInvoiceSupplierOutput,
    check_file_duplicate,
    check_invoice_duplicate,
    configure_services,
    ingest_supplier,
    process_invoice_supplier,
)
from core.config import ResolutionSettings
from dedup import DuplicateStatus, ExtractedFields, FileSource
from supplier_resolver import ProcessingNotes
from workflows.resolution_workflow import DocumentResolutionInput, DocumentResolutionWorkflow


@pytest.fixture
def services(tmp_path):
    return configure_services(ResolutionSettings(db_path=tmp_path / "activities.db"))


@pytest.fixture
def env():
    return ActivityEnvironment()


@pytest.fixture
def add_extraction(services):
    def _add(fields, tenant_id="t1", document_type="invoice"):
        with services.database.transaction() as conn:
            return services.dedup_repository.insert_extraction(
                conn, tenant_id, ExtractedFields.from_mapping(fields), document_type=document_type,
            )
    return _add


def stamped(services, extraction_id):
    with services.database.read() as conn:
        return services.dedup_repository.get_extraction(conn, extraction_id)


class TestCheckFileDuplicate:

    @pytest.mark.asyncio
    async def test_known_file(self, services, env):
        registered = services.file_detector.register_file("t1", FileSource.USER_UPLOAD, content=b"pdf")

        result = await env.run(check_file_duplicate, CheckFileDuplicateInput(
            tenant_id="t1",
            source="user_upload",
            content_hash=registered.file.content_hash,
            file_size=3,
        ))

        assert result.is_duplicate is True
        assert result.duplicate_file_id == registered.file.id
        assert result.confidence == 1.0


class TestCheckInvoiceDuplicate:

    @pytest.mark.asyncio
    async def test_classifies_and_stamps(self, services, env, add_extraction, adobe_invoice):
        prior = add_extraction(adobe_invoice)
        new = add_extraction(adobe_invoice)

        result = await env.run(check_invoice_duplicate, CheckInvoiceDuplicateInput("t1", new.id))

        assert result.duplicate_type == "exact"
        assert result.duplicate_extraction_id == prior.id
        assert result.score_breakdown["overall_score"] == 1.0
        assert stamped(services, new.id).duplicate_status == DuplicateStatus.DUPLICATE

    @pytest.mark.asyncio
    async def test_missing_extraction_is_not_retryable(self, services, env):
        with pytest.raises(ApplicationError) as exc:
            await env.run(check_invoice_duplicate, CheckInvoiceDuplicateInput("t1", "missing"))

        assert exc.value.type == "ExtractionNotFound"
        assert exc.value.non_retryable is True

    @pytest.mark.asyncio
    async def test_other_tenants_extraction_is_not_found(self, services, env, add_extraction, adobe_invoice):
        foreign = add_extraction(adobe_invoice, tenant_id="t2")

        with pytest.raises(ApplicationError):
            await env.run(check_invoice_duplicate, CheckInvoiceDuplicateInput("t1", foreign.id))


class TestIngestSupplier:

    @pytest.mark.asyncio
    async def test_request_dict_is_ingested(self, services, env):
        request = {
            "tenant_id": "t1",
            "source": "manual",
            "source_id": "form-1",
            "data": {"name": "Acme Widgets Ltd", "identifiers": {"company_number": "12345678"}},
        }

        first = await env.run(ingest_supplier, IngestSupplierInput(request))
        second = await env.run(ingest_supplier, IngestSupplierInput(request))

        assert (first.action, second.action) == ("created", "matched")
        assert first.supplier_id == second.supplier_id

    @pytest.mark.asyncio
    async def test_invalid_request_is_skipped(self, services, env):
        result = await env.run(ingest_supplier, IngestSupplierInput({
            "tenant_id": "t1", "source": "invoice", "source_id": "ext-1", "data": {},
        }))

        assert result.success is False
        assert result.action == "skipped"
        assert result.reason == "validation_failed"


class TestProcessInvoiceSupplier:

    @pytest.mark.asyncio
    async def test_created_then_matched(self, services, env, add_extraction, adobe_invoice):
        first = add_extraction(adobe_invoice)
        second = add_extraction(adobe_invoice)

        created = await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", first.id))
        matched = await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", second.id))

        assert created.action == "created"
        assert created.confidence == 1.0
        assert matched.action == "matched"
        assert matched.supplier_id == created.supplier_id
        assert matched.confidence == 0.95

        record = stamped(services, first.id)
        assert record.matched_supplier_id == created.supplier_id
        assert record.match_confidence == 1.0
        assert record.processing_notes == ProcessingNotes.SUPPLIER_CREATED
        assert stamped(services, second.id).processing_notes == ProcessingNotes.SUPPLIER_MATCHED

    @pytest.mark.asyncio
    async def test_missing_vendor_name(self, services, env, add_extraction):
        extraction = add_extraction({"invoiceNumber": {"value": "INV-1"}})

        result = await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", extraction.id))

        assert result.skipped is True
        assert result.reason == ProcessingNotes.INSUFFICIENT_DATA
        record = stamped(services, extraction.id)
        assert record.matched_supplier_id is None
        assert record.processing_notes == ProcessingNotes.INSUFFICIENT_DATA

    @pytest.mark.asyncio
    async def test_low_confidence_is_stamped_for_review(self, services, env, add_extraction):
        first = add_extraction({"vendorName": "Northwind Traders"})
        second = add_extraction({"vendorName": "Northwind Trading"})

        await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", first.id))
        result = await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", second.id))

        assert result.skipped is True
        assert result.supplier_id is None
        record = stamped(services, second.id)
        assert record.matched_supplier_id is None
        assert record.match_confidence == 0.5
        assert record.processing_notes == ProcessingNotes.LOW_CONFIDENCE

    @pytest.mark.asyncio
    async def test_non_invoice_document_is_skipped(self, services, env, add_extraction, adobe_invoice):
        extraction = add_extraction(adobe_invoice, document_type="bank_statement")

        result = await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", extraction.id))

        assert result.skipped is True
        assert result.reason == ProcessingNotes.NOT_INVOICE
        assert stamped(services, extraction.id).processing_notes is None

    @pytest.mark.asyncio
    async def test_missing_extraction(self, services, env):
        with pytest.raises(ApplicationError) as exc:
            await env.run(process_invoice_supplier, ProcessInvoiceSupplierInput("t1", "missing"))

        assert exc.value.type == "ExtractionNotFound"


class TestDocumentResolutionWorkflow:

    @staticmethod
    def verdict(duplicate_type):
        return CheckInvoiceDuplicateOutput(
            is_duplicate=duplicate_type != "unique",
            fingerprint="f" * 64,
            duplicate_type=duplicate_type,
            confidence=1.0 if duplicate_type == "exact" else 0.0,
            duplicate_extraction_id="ext-0" if duplicate_type != "unique" else None,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duplicate_type", ["exact", "likely"])
    async def test_duplicates_stop_before_supplier(self, duplicate_type):
        execute = AsyncMock(side_effect=[self.verdict(duplicate_type)])

        with patch("temporalio.workflow.execute_activity", execute), \
                patch("temporalio.workflow.logger", MagicMock()):
            result = await DocumentResolutionWorkflow().run(DocumentResolutionInput("t1", "ext-1"))

        assert execute.await_count == 1
        assert result.duplicate_type == duplicate_type
        assert result.duplicate_extraction_id == "ext-0"
        assert result.supplier_action is None

    @pytest.mark.asyncio
    async def test_only_missing_extractions_are_not_retried(self):
        execute = AsyncMock(side_effect=[self.verdict("exact")])

        with patch("temporalio.workflow.execute_activity", execute), \
                patch("temporalio.workflow.logger", MagicMock()):
            await DocumentResolutionWorkflow().run(DocumentResolutionInput("t1", "ext-1"))

        retry_policy = execute.await_args_list[0].kwargs["retry_policy"]
        assert retry_policy.maximum_attempts == 3
        assert retry_policy.non_retryable_error_types == ["ExtractionNotFound"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duplicate_type", ["possible", "unique"])
    async def test_other_verdicts_resolve_supplier(self, duplicate_type):
        supplier = ProcessInvoiceSupplierOutput(
            skipped=False, action="created", supplier_id="sup-1", confidence=1.0,
            reason=ProcessingNotes.SUPPLIER_CREATED,
        )
        execute = AsyncMock(side_effect=[self.verdict(duplicate_type), supplier])

        with patch("temporalio.workflow.execute_activity", execute):
            result = await DocumentResolutionWorkflow().run(DocumentResolutionInput("t1", "ext-1", "u1"))

        assert execute.await_count == 2
        assert execute.await_args_list[1].args[0] is process_invoice_supplier
        assert execute.await_args_list[1].args[1] == ProcessInvoiceSupplierInput("t1", "ext-1", "u1")
        assert result.supplier_action == "created"
        assert result.supplier_id == "sup-1"
        assert result.notes == ProcessingNotes.SUPPLIER_CREATED
