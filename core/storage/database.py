"""SQLite unit-of-work plumbing shared by the dedup and supplier repositories.

Each unit of work gets its own connection. Writers open the transaction
with ``BEGIN IMMEDIATE`` so concurrent ingestions serialize on the write
lock instead of failing at commit; readers see the last committed state
(WAL journal).

Usage:
    db = Database("resolution.db")
    db.init_schema(FILES_SCHEMA, SUPPLIERS_SCHEMA)

    with db.transaction() as conn:
        conn.execute("INSERT INTO ...")
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Union

from core.errors import PersistenceError
from core.observability.logging import get_logger

logger = get_logger(__name__)


# Default database path (repo root)
DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / "resolution.db"

DEFAULT_BUSY_TIMEOUT_MS = 30000


def to_utc_iso(value: datetime) -> str:
    """ISO-8601 string in UTC without an offset, so stored timestamps sort as text.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string (sortable)."""
    return to_utc_iso(datetime.now(timezone.utc))


def parse_timestamp(value):
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Connection factory for one SQLite database file."""

    def __init__(
        self,
        db_path: Union[str, Path] = DEFAULT_DB_PATH,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms

    def connect(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; transactions are explicit."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open database {self.db_path}: {e}") from e
        return conn

    def init_schema(self, *scripts: str) -> None:
        """Create tables and indexes (idempotent)."""
        conn = self.connect()
        try:
            for script in scripts:
                conn.executescript(script)
        except sqlite3.Error as e:
            raise PersistenceError(f"Schema initialization failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a write unit of work; commit on success, roll back on any error.

        Storage errors escaping the block are raised as PersistenceError.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            _rollback(conn)
            logger.error("Transaction rolled back", extra_fields={"error": str(e)})
            raise PersistenceError(f"Transaction failed: {e}") from e
        except BaseException:
            _rollback(conn)
            raise
        finally:
            conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Read-only access outside an explicit transaction."""
        conn = self.connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def connection(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Join the caller's unit of work if given, else open a read connection."""
        if conn is not None:
            try:
                yield conn
            except sqlite3.Error as e:
                raise PersistenceError(f"Query failed: {e}") from e
            return
        with self.read() as own:
            yield own

    @contextmanager
    def unit_of_work(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """Join the caller's transaction if given, else run a new one."""
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("Rollback failed", extra_fields={"error": str(e)})
