"""Error taxonomy for identity resolution.

- ValidationError: malformed input for a single ingestion item
- ConcurrencyConflictError: unique-constraint race, recovered by re-reading
- PersistenceError: storage failure, surfaced as a failed result

Insufficient data is not an exception: the matcher signals it as an outcome
so the item can be queued for manual review.
"""

from typing import List, Optional


class ResolutionError(Exception):
    """Base exception for the resolution engine."""
    pass


class ValidationError(ResolutionError):
    """Input failed validation (missing name, bad identifier format, ...)."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class ConcurrencyConflictError(ResolutionError):
    """A unique constraint was hit by a concurrent writer."""

    def __init__(self, message: str, constraint: str = ""):
        super().__init__(message)
        self.constraint = constraint


class PersistenceError(ResolutionError):
    """Underlying storage failed."""
    pass
