"""Content hashing and invoice fingerprints.

Pure functions, no I/O. The same logical content always hashes to the same
digest regardless of key order, incidental whitespace or letter case:

    composite_hash({"b": " X ", "a": 1}) == composite_hash({"a": 1, "b": "x"})

    invoice_fingerprint("Adobe  Systems", "inv-100", "2024-01-15", 24.59) ==
        invoice_fingerprint("adobe systems", "INV-100 ", "2024-01-15T00:00:00", "24.590")
"""

import hashlib
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional, Union

from core.observability.logging import get_logger

logger = get_logger(__name__)

COMPOSITE_SEPARATOR = "|"

DEFAULT_CURRENCY = "GBP"

# Tried in order after ISO-8601
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)

_CURRENCY_NOISE = re.compile(r"[£$€\s]")


def sha256(data: Union[bytes, str]) -> str:
    """Hex SHA-256 of bytes (strings are UTF-8 encoded first)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def calculate_file_hash(content: bytes) -> str:
    """Content hash of a file's raw bytes."""
    return sha256(content)


def coerce_date(value: Any) -> Optional[date]:
    """Parse a date-like value to a calendar date, or None if unparseable.

    Timezone-aware datetimes are converted to UTC before taking the date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return coerce_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def coerce_amount(value: Any) -> Optional[Decimal]:
    """Parse a monetary amount to Decimal, or None if non-numeric."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        # str() first so 24.6 stays 24.6 rather than its binary expansion
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = _CURRENCY_NOISE.sub("", value).replace(",", "")
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None

    if not amount.is_finite():
        return None
    return amount


def _normalize_component(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def composite_hash(fields: Mapping[str, Any]) -> str:
    """Hash a set of named fields independent of key order.

    Keys are sorted; values are normalized (strings trimmed and lowercased,
    dates in ISO-8601, numbers stringified, None as empty string) and joined
    with ``|`` before hashing.
    """
    values = [_normalize_component(fields[key]) for key in sorted(fields)]
    return sha256(COMPOSITE_SEPARATOR.join(values))


def normalize_vendor(vendor_name: Optional[str]) -> str:
    """Trim, lowercase and collapse whitespace."""
    if not vendor_name:
        return ""
    return " ".join(str(vendor_name).split()).lower()


def normalize_invoice_number(invoice_number: Optional[Any]) -> str:
    if invoice_number is None:
        return ""
    return str(invoice_number).strip().upper()


def normalize_amount(total_amount: Any) -> str:
    """Amount as a fixed two-decimal string, empty if non-numeric."""
    amount = coerce_amount(total_amount)
    if amount is None:
        return ""
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def normalize_currency(currency: Optional[str], default: str = DEFAULT_CURRENCY) -> str:
    if not currency or not str(currency).strip():
        return default
    return str(currency).strip().upper()[:3]


def invoice_fingerprint(
    vendor_name: Optional[str],
    invoice_number: Optional[Any],
    invoice_date: Any,
    total_amount: Any,
    currency: Optional[str] = DEFAULT_CURRENCY,
) -> str:
    """Fingerprint of an invoice's identity fields.

    Two extractions with the same fingerprint are certain duplicates.

    Args:
        vendor_name: Vendor as extracted
        invoice_number: Invoice number as extracted
        invoice_date: date, datetime or date string
        total_amount: number, Decimal or numeric string
        currency: ISO currency code (missing falls back to GBP)

    Returns:
        Hex SHA-256 fingerprint
    """
    parsed_date = coerce_date(invoice_date)
    components = {
        "vendor": normalize_vendor(vendor_name),
        "invoice": normalize_invoice_number(invoice_number),
        "date": parsed_date.isoformat() if parsed_date else "",
        "amount": normalize_amount(total_amount),
        "currency": normalize_currency(currency),
    }
    fingerprint = composite_hash(components)

    logger.debug("Generated invoice fingerprint", extra_fields={**components, "fingerprint": fingerprint})
    return fingerprint
