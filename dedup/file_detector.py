"""File-level duplicate detection.

Byte-identical content is the only meaningful definition of a duplicate
file, so this is an exact lookup on (content_hash, file_size, source,
source_id) within a tenant. There is no fuzzy fallback.
"""

import sqlite3
import time
from typing import Optional

from core.errors import ValidationError
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import record_file_check, record_processing_time
from core.storage import Database
from dedup.db import DedupRepository
from dedup.hashing import calculate_file_hash
from dedup.models import (
    FileDuplicateVerdict,
    FileRegistration,
    FileSource,
    ProcessDecision,
)

logger = get_logger(__name__)


class FileDuplicateDetector:
    """Finds exact byte-identical files within a tenant.

    Example:
        detector = FileDuplicateDetector(Database("resolution.db"))
        verdict = detector.check_file_duplicate(
            tenant_id="t-001",
            source=FileSource.USER_UPLOAD,
            content=pdf_bytes,
        )
        if verdict.is_duplicate:
            print(f"Already have {verdict.duplicate_file_id}")
    """

    def __init__(self, database: Database, repository: Optional[DedupRepository] = None):
        self.database = database
        self.repository = repository or DedupRepository()

    def check_file_duplicate(
        self,
        tenant_id: str,
        source: FileSource,
        content: Optional[bytes] = None,
        content_hash: Optional[str] = None,
        file_size: Optional[int] = None,
        source_id: Optional[str] = None,
        exclude_file_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> FileDuplicateVerdict:
        """Check a new file against the tenant's existing files.

        Args:
            tenant_id: Isolation boundary
            source: Where the file came from
            content: Raw bytes (hash and size are derived from them)
            content_hash: Precomputed SHA-256, when bytes are not at hand
            file_size: Size in bytes (required with content_hash)
            source_id: External reference, if any
            exclude_file_id: Ignore this file (the one being checked)
            conn: Join an open unit of work

        Returns:
            FileDuplicateVerdict with confidence 1.0 on a match, else 0.0
        """
        start = time.time()
        content_hash, file_size = _resolve_identity(content, content_hash, file_size)

        with with_correlation(tenant_id=tenant_id, source=FileSource(source).value, source_id=source_id):
            with self.database.connection(conn) as c:
                existing = self.repository.find_file(
                    c, tenant_id, content_hash, file_size, source, source_id,
                    exclude_file_id=exclude_file_id,
                )

            if existing:
                logger.info("File duplicate found", extra_fields={
                    "duplicate_file_id": existing.id,
                    "content_hash": content_hash,
                })
                verdict = FileDuplicateVerdict(
                    is_duplicate=True,
                    duplicate_file_id=existing.id,
                    content_hash=content_hash,
                    confidence=1.0,
                )
            else:
                logger.info("No file duplicate found", extra_fields={"content_hash": content_hash})
                verdict = FileDuplicateVerdict(is_duplicate=False, content_hash=content_hash, confidence=0.0)

        record_file_check(verdict.is_duplicate)
        record_processing_time("dedup.file_check", (time.time() - start) * 1000)
        return verdict

    def register_file(
        self,
        tenant_id: str,
        source: FileSource,
        content: Optional[bytes] = None,
        content_hash: Optional[str] = None,
        file_size: Optional[int] = None,
        source_id: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> FileRegistration:
        """Record an upload, resolving to the existing file if one matches.

        Safe to call repeatedly with the same input.
        """
        content_hash, file_size = _resolve_identity(content, content_hash, file_size)

        with with_correlation(tenant_id=tenant_id, source_id=source_id):
            with self.database.transaction() as conn:
                existing = self.repository.find_file(conn, tenant_id, content_hash, file_size, source, source_id)
                if existing:
                    logger.info("Upload resolved to existing file", extra_fields={"file_id": existing.id})
                    return FileRegistration(file=existing, created=False)

                record = self.repository.insert_file(
                    conn, tenant_id, content_hash, file_size, source, source_id, file_name,
                )

            logger.info("Registered new file", extra_fields={"file_id": record.id, "content_hash": content_hash})
            return FileRegistration(file=record, created=True)

    def calculate_and_store_file_hash(self, file_id: str, content: bytes) -> str:
        """Hash a file's bytes and store hash and size on its record.

        If another file in the tenant already has the same identity the
        record is left unchanged; a follow-up check will report it as a
        duplicate of that file.
        """
        content_hash = calculate_file_hash(content)

        with with_correlation(file_id=file_id):
            with self.database.transaction() as conn:
                stored = self.repository.update_file_hash(conn, file_id, content_hash, len(content))

            if stored:
                logger.info("File hash calculated and stored", extra_fields={
                    "content_hash": content_hash,
                    "file_size": len(content),
                })
            else:
                logger.warning("File hash not stored", extra_fields={"content_hash": content_hash})
        return content_hash

    def should_process_file(
        self,
        file_id: str,
        tenant_id: str,
        source: FileSource,
        content_hash: str,
        file_size: int,
        source_id: Optional[str] = None,
    ) -> ProcessDecision:
        """Decide whether an uploaded file still needs extraction."""
        verdict = self.check_file_duplicate(
            tenant_id=tenant_id,
            source=source,
            content_hash=content_hash,
            file_size=file_size,
            source_id=source_id,
            exclude_file_id=file_id,
        )
        if verdict.is_duplicate:
            return ProcessDecision(
                should_process=False,
                reason="Duplicate file already processed",
                duplicate_file_id=verdict.duplicate_file_id,
            )
        return ProcessDecision(should_process=True)


def _resolve_identity(
    content: Optional[bytes],
    content_hash: Optional[str],
    file_size: Optional[int],
):
    if content is not None:
        return calculate_file_hash(content), len(content) if file_size is None else file_size
    if not content_hash:
        raise ValidationError("Either file content or a content hash is required")
    if file_size is None or file_size < 0:
        raise ValidationError("file_size is required when only a content hash is given")
    return content_hash, file_size
