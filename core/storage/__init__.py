"""Core storage - SQLite connection and unit-of-work handling."""

from core.storage.database import (
    DEFAULT_DB_PATH,
    Database,
    parse_timestamp,
    to_utc_iso,
    utcnow_iso,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "Database",
    "parse_timestamp",
    "to_utc_iso",
    "utcnow_iso",
]
