"""Normalization Utilities.

This module turns raw supplier evidence into canonical forms:
1. Supplier names for the uniqueness key (trim, lowercase, collapse whitespace)
2. URL-safe slugs
3. Company and VAT numbers
4. Attribute payloads (address, contacts, bank accounts) plus the hash that
   identifies the same fact across observations

Examples:
    "  Acme   Widgets Ltd " -> "acme widgets ltd"      (normalized name)
    "Acme & Sons (UK) Ltd"  -> "acme-sons-uk-ltd"       (slug)
    "gb 123 4567 89"        -> "GB123456789"            (VAT number)
"""

import re
from typing import Any, Dict, Optional, Tuple

from dedup.hashing import composite_hash
from supplier_resolver.constants import SLUG_MAX_LENGTH
from supplier_resolver.models import Address, AttributeType, BankAccount


_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
_IDENTIFIER_NOISE = re.compile(r"[\s.\-/]")
_ALNUM = re.compile(r"[A-Za-z0-9]")

DEFAULT_SLUG = "supplier"


# =============================================================================
# Names and slugs
# =============================================================================

def normalize_supplier_name(name: Optional[str]) -> str:
    """Trim, lowercase and collapse whitespace.

    This is the per-tenant uniqueness key for active suppliers, so it must
    stay a simple, stable transform.
    """
    if not name:
        return ""
    return " ".join(str(name).split()).lower()


def is_sparse_name(normalized_name: str, min_length: int = 2) -> bool:
    """Too little signal to match on or create from."""
    if len(normalized_name) < min_length:
        return True
    return _ALNUM.search(normalized_name) is None


def generate_slug(name: Optional[str]) -> str:
    """Base URL-safe slug for a supplier name.

    Lowercase, runs of non-alphanumerics become a single hyphen, trimmed of
    hyphens and truncated; falls back to ``supplier`` when nothing is left.
    """
    slug = _NON_SLUG_CHARS.sub("-", (name or "").lower()).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].rstrip("-")
    return slug or DEFAULT_SLUG


def slug_candidate(base: str, attempt: int) -> str:
    """base, base-1, base-2, ..."""
    return base if attempt == 0 else f"{base}-{attempt}"


# =============================================================================
# Identifiers
# =============================================================================

def normalize_company_number(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = re.sub(r"\s", "", str(value)).upper()
    return cleaned or None


def normalize_vat_number(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = _IDENTIFIER_NOISE.sub("", str(value)).upper()
    return cleaned or None


# =============================================================================
# Contacts
# =============================================================================

def normalize_email(value: str) -> str:
    return value.strip().lower()


def normalize_phone(value: str) -> str:
    """Digits only, keeping a leading + for international numbers."""
    text = value.strip()
    digits = re.sub(r"\D", "", text)
    return f"+{digits}" if text.startswith("+") else digits


def normalize_website(value: str) -> str:
    """Lowercase host and path without scheme, ``www.`` or trailing slash."""
    text = value.strip().lower()
    text = re.sub(r"^[a-z][a-z0-9+.\-]*://", "", text)
    if text.startswith("www."):
        text = text[4:]
    return text.rstrip("/")


# =============================================================================
# Attribute payloads
# =============================================================================

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def normalize_address(address: Address) -> Dict[str, Any]:
    postal_code = _clean(address.postal_code)
    country = _clean(address.country)
    return {
        "line1": _clean(address.line1),
        "line2": _clean(address.line2),
        "city": _clean(address.city),
        "postal_code": postal_code.upper() if postal_code else None,
        "country": country.upper() if country else None,
    }


def normalize_bank_account(account: BankAccount) -> Dict[str, Any]:
    iban = _IDENTIFIER_NOISE.sub("", account.iban).upper() if account.iban else None
    sort_code = re.sub(r"\D", "", account.sort_code) if account.sort_code else None
    account_number = re.sub(r"\s|-", "", account.account_number) if account.account_number else None
    return {
        "iban": iban or None,
        "sort_code": sort_code or None,
        "account_number": account_number or None,
        "account_name": _clean(account.account_name),
        "bank_name": _clean(account.bank_name),
    }


def canonical_attribute(attribute_type: AttributeType, raw: Any) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return (stored value, identity fields) for an observation.

    The identity fields decide whether two observations are the same fact.
    For bank accounts that is the IBAN, else sort code and account number;
    account and bank names are descriptive only.
    """
    attribute_type = AttributeType(attribute_type)

    if attribute_type == AttributeType.ADDRESS:
        value = normalize_address(raw if isinstance(raw, Address) else Address(**raw))
        identity = dict(value)
    elif attribute_type == AttributeType.BANK_ACCOUNT:
        value = normalize_bank_account(raw if isinstance(raw, BankAccount) else BankAccount(**raw))
        if value["iban"]:
            identity = {"iban": value["iban"]}
        else:
            identity = {"sort_code": value["sort_code"], "account_number": value["account_number"]}
    elif attribute_type == AttributeType.EMAIL:
        value = {"address": normalize_email(str(raw))}
        identity = value
    elif attribute_type == AttributeType.PHONE:
        value = {"number": normalize_phone(str(raw))}
        identity = value
    elif attribute_type == AttributeType.WEBSITE:
        value = {"url": normalize_website(str(raw))}
        identity = value
    elif attribute_type == AttributeType.COMPANY_NUMBER:
        value = {"number": normalize_company_number(str(raw))}
        identity = value
    else:
        value = {"number": normalize_vat_number(str(raw))}
        identity = value

    return value, identity


def attribute_hash(identity: Dict[str, Any]) -> str:
    """Dedup key for an attribute value (order-, case- and whitespace-insensitive)."""
    return composite_hash(identity)
