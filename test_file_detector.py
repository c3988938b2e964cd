"""Tests for byte-identical file duplicate detection."""

import pytest

from core.errors import ValidationError
from core.observability.metrics import get_metrics
from dedup import DedupRepository, FileDuplicateDetector, FileSource
from dedup.hashing import calculate_file_hash

CONTENT = b"%PDF-1.7 invoice INV-100"


@pytest.fixture
def detector(db):
    return FileDuplicateDetector(db)


class TestRegisterFile:

    def test_first_upload_is_created(self, detector):
        registration = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT, file_name="a.pdf")

        assert registration.created is True
        assert registration.file.content_hash == calculate_file_hash(CONTENT)
        assert registration.file.file_size == len(CONTENT)

    def test_same_upload_resolves_to_existing_file(self, detector):
        first = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)
        second = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        assert second.created is False
        assert second.file.id == first.file.id

    def test_other_source_id_is_a_different_file(self, detector):
        first = detector.register_file("t1", FileSource.INTEGRATION, content=CONTENT, source_id="msg-1")
        second = detector.register_file("t1", FileSource.INTEGRATION, content=CONTENT, source_id="msg-2")

        assert second.created is True
        assert second.file.id != first.file.id


class TestCheckFileDuplicate:

    def test_known_bytes_are_duplicate(self, detector):
        registered = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate("t1", FileSource.USER_UPLOAD, content=CONTENT)

        assert verdict.is_duplicate is True
        assert verdict.duplicate_file_id == registered.file.id
        assert verdict.confidence == 1.0

    def test_precomputed_hash(self, detector):
        detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate(
            "t1", FileSource.USER_UPLOAD,
            content_hash=calculate_file_hash(CONTENT), file_size=len(CONTENT),
        )

        assert verdict.is_duplicate is True

    def test_new_bytes_are_not_duplicate(self, detector):
        detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate("t1", FileSource.USER_UPLOAD, content=CONTENT + b" ")

        assert verdict.is_duplicate is False
        assert verdict.duplicate_file_id is None
        assert verdict.confidence == 0.0

    def test_tenants_are_isolated(self, detector):
        detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate("t2", FileSource.USER_UPLOAD, content=CONTENT)

        assert verdict.is_duplicate is False

    def test_source_is_part_of_identity(self, detector):
        detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate("t1", FileSource.WHATSAPP, content=CONTENT)

        assert verdict.is_duplicate is False

    def test_excluded_file_is_ignored(self, detector):
        registered = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        verdict = detector.check_file_duplicate(
            "t1", FileSource.USER_UPLOAD, content=CONTENT, exclude_file_id=registered.file.id,
        )

        assert verdict.is_duplicate is False

    def test_requires_content_or_hash(self, detector):
        with pytest.raises(ValidationError):
            detector.check_file_duplicate("t1", FileSource.USER_UPLOAD)

        with pytest.raises(ValidationError):
            detector.check_file_duplicate("t1", FileSource.USER_UPLOAD, content_hash="abc")

    def test_records_metrics(self, detector):
        detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)
        detector.check_file_duplicate("t1", FileSource.USER_UPLOAD, content=CONTENT)
        detector.check_file_duplicate("t1", FileSource.USER_UPLOAD, content=b"other")

        summary = get_metrics().get_summary()
        assert summary["dedup"]["file_checks"] == 2
        assert summary["dedup"]["file_duplicates"] == 1
        assert "dedup.file_check" in summary["timings"]["by_stage"]


class TestHashAndProcessDecision:

    @pytest.fixture
    def pending_file(self, db):
        """A file row created before its bytes were hashed."""
        repository = DedupRepository()
        with db.transaction() as conn:
            return repository.insert_file(conn, "t1", None, 0, FileSource.USER_UPLOAD)

    def test_calculate_and_store_file_hash(self, detector, db, pending_file):
        content_hash = detector.calculate_and_store_file_hash(pending_file.id, CONTENT)

        with db.read() as conn:
            stored = DedupRepository().get_file(conn, pending_file.id)
        assert stored.content_hash == content_hash
        assert stored.file_size == len(CONTENT)

    def test_unique_file_should_be_processed(self, detector, pending_file):
        content_hash = detector.calculate_and_store_file_hash(pending_file.id, CONTENT)

        decision = detector.should_process_file(
            pending_file.id, "t1", FileSource.USER_UPLOAD, content_hash, len(CONTENT),
        )

        assert decision.should_process is True

    def test_duplicate_file_should_not_be_processed(self, detector, db, pending_file):
        original = detector.register_file("t1", FileSource.USER_UPLOAD, content=CONTENT)

        # Identity already taken: the hash is returned but not stored on the row
        content_hash = detector.calculate_and_store_file_hash(pending_file.id, CONTENT)
        with db.read() as conn:
            assert DedupRepository().get_file(conn, pending_file.id).content_hash is None

        decision = detector.should_process_file(
            pending_file.id, "t1", FileSource.USER_UPLOAD, content_hash, len(CONTENT),
        )

        assert decision.should_process is False
        assert decision.duplicate_file_id == original.file.id
        assert decision.reason == "Duplicate file already processed"
