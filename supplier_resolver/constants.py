"""Confidence constants and processing notes for supplier resolution.

Match confidence is on a 0-1 scale; attribute confidence is 0-100.
"""


class ConfidenceScores:
    """How confident a supplier resolution is (0-1)."""
    SUPPLIER_CREATED = 1.0    # Supplier was just created from this data
    SUPPLIER_MATCHED = 0.95   # Matched to an existing supplier
    LOW_MATCH = 0.5
    NO_MATCH = 0.0
    INSUFFICIENT_DATA = 0.0


class DefaultConfidence:
    """Attribute confidence (0-100) by data source."""
    DOCUMENT_EXTRACTED = 70
    MANUAL_ENTRY = 80

    # Added when the same value is seen again
    REPEAT_OBSERVATION_INCREMENT = 5
    MAX_CONFIDENCE = 100


class ProcessingNotes:
    SUPPLIER_CREATED = "Supplier created"
    SUPPLIER_MATCHED = "Matched to existing supplier"
    LOW_CONFIDENCE = "Low confidence match, queued for review"
    AMBIGUOUS = "Supplier match is ambiguous, queued for review"
    INSUFFICIENT_DATA = "Insufficient data for supplier creation"
    VALIDATION_FAILED = "Supplier validation failed"
    NOT_INVOICE = "Not an invoice-type document"
    ERROR = "Error processing supplier"


# Attempts before giving up on a unique slug
MAX_SLUG_ATTEMPTS = 100

# Retries when a concurrent writer wins the primary flag
MAX_PRIMARY_RETRIES = 3

SLUG_MAX_LENGTH = 50
