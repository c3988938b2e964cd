"""Tests for the shared SQLite plumbing."""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import PersistenceError
from core.storage import parse_timestamp, to_utc_iso, utcnow_iso
from dedup import DedupRepository, ExtractedFields


def test_utcnow_is_stored_without_offset():
    stamp = utcnow_iso()

    parsed = parse_timestamp(stamp)
    assert parsed.tzinfo is None
    assert abs(parsed - datetime.now(timezone.utc).replace(tzinfo=None)) < timedelta(seconds=5)


def test_aware_datetimes_are_converted_to_utc():
    local = datetime(2024, 1, 15, 12, 30, tzinfo=timezone(timedelta(hours=2)))

    assert to_utc_iso(local) == "2024-01-15T10:30:00"
    assert to_utc_iso(datetime(2024, 1, 15, 10, 30)) == "2024-01-15T10:30:00"


def test_extraction_timestamps_sort_in_utc(db):
    repository = DedupRepository()
    with db.transaction() as conn:
        repository.insert_extraction(
            conn, "t1", ExtractedFields.from_mapping({"vendorName": "Adobe Systems"}),
            extraction_id="ahead-of-utc",
            created_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone(timedelta(hours=5))),
        )
        repository.insert_extraction(
            conn, "t1", ExtractedFields.from_mapping({"vendorName": "Adobe Systems"}),
            extraction_id="utc",
            created_at=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
        )

    with db.read() as conn:
        candidates = repository.find_candidate_extractions(conn, "t1", window_days=None)

    assert [c.id for c in candidates] == ["utc", "ahead-of-utc"]
    assert candidates[1].created_at == datetime(2024, 1, 15, 7, 0)


def test_storage_errors_become_persistence_errors(db):
    with pytest.raises(PersistenceError):
        with db.transaction() as conn:
            conn.execute("INSERT INTO missing_table VALUES (1)")
