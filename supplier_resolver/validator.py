"""Supplier data validation.

Errors reject the ingestion item (ValidationError); warnings are logged and
ingestion continues.
"""

import re
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from core.errors import ValidationError
from core.observability.logging import get_logger
from supplier_resolver.models import ContactType, SupplierIngestionData

logger = get_logger(__name__)


MAX_NAME_LENGTH = 200

DEFAULT_COUNTRY = "GB"

VAT_PATTERNS: Dict[str, re.Pattern] = {
    "GB": re.compile(r"^GB\d{9}(\d{3})?$"),
    "IE": re.compile(r"^IE\d{7}[A-Z]{1,2}$"),
    "FR": re.compile(r"^FR[A-Z0-9]{2}\d{9}$"),
    "DE": re.compile(r"^DE\d{9}$"),
    "NL": re.compile(r"^NL\d{9}B\d{2}$"),
    "ES": re.compile(r"^ES[A-Z]\d{7}[A-Z0-9]$"),
    "IT": re.compile(r"^IT\d{11}$"),
}

COMPANY_NUMBER_PATTERNS: Dict[str, re.Pattern] = {
    "GB": re.compile(r"^(?:\d{8}|[A-Z]{2}\d{6})$"),  # 8 digits or 2 letters + 6 digits
    "IE": re.compile(r"^\d{6}$"),
}

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


class ValidationReport(BaseModel):
    """Cleaned identifiers plus any non-fatal warnings."""
    company_number: Optional[str] = None
    vat_number: Optional[str] = None
    country: str = DEFAULT_COUNTRY
    warnings: List[str] = Field(default_factory=list)


class SupplierValidator:
    """Checks supplier ingestion data before matching.

    Example:
        report = SupplierValidator.validate(request.data)   # may raise ValidationError
        company_number = report.company_number
    """

    @classmethod
    def validate(cls, data: SupplierIngestionData) -> ValidationReport:
        errors: List[str] = []
        warnings: List[str] = []

        if data.name is None:
            errors.append("Supplier name is required")
        elif len(data.name.strip()) > MAX_NAME_LENGTH:
            errors.append(f"Supplier name exceeds {MAX_NAME_LENGTH} characters")

        country = DEFAULT_COUNTRY
        if data.addresses and data.addresses[0].country:
            country = data.addresses[0].country.strip().upper()

        company_number = cls._validate_company_number(data.identifiers.company_number, country, errors)
        vat_number, vat_country = cls._validate_vat_number(data.identifiers.vat_number, country, errors)

        for index, address in enumerate(data.addresses):
            if not address.line1 or not address.line1.strip():
                errors.append(f"Address {index + 1} has no first line")

        for index, account in enumerate(data.bank_accounts):
            if not (account.iban and account.iban.strip()) and not (account.account_number and account.account_number.strip()):
                errors.append(f"Bank account {index + 1} needs an IBAN or account number")

        for contact in data.contacts:
            if contact.type == ContactType.EMAIL and not _EMAIL.match(contact.value.strip()):
                warnings.append(f"Invalid email: {contact.value}")
            elif contact.type == ContactType.PHONE and not cls.is_valid_phone(contact.value):
                warnings.append(f"Invalid phone number: {contact.value}")
            elif contact.type == ContactType.WEBSITE and not cls.is_valid_website(contact.value):
                warnings.append(f"Invalid website: {contact.value}")

        if errors:
            raise ValidationError("Supplier validation failed: " + "; ".join(errors), errors)

        if warnings:
            logger.info("Supplier data quality warnings", extra_fields={
                "name": data.name,
                "warnings": warnings,
            })

        return ValidationReport(
            company_number=company_number,
            vat_number=vat_number,
            country=vat_country or country,
            warnings=warnings,
        )

    @staticmethod
    def _validate_company_number(value: Optional[str], country: str, errors: List[str]) -> Optional[str]:
        if not value or not value.strip():
            return None

        pattern = COMPANY_NUMBER_PATTERNS.get(country)
        if pattern:
            cleaned = _NON_ALNUM.sub("", value).upper()
            if not pattern.match(cleaned):
                errors.append(f"Invalid {country} company number: {value}")
                return None
            return cleaned

        cleaned = value.strip().upper()
        if not 4 <= len(cleaned) <= 20:
            errors.append(f"Invalid company number: {value}")
            return None
        return cleaned

    @staticmethod
    def _validate_vat_number(value: Optional[str], country: str, errors: List[str]):
        if not value or not value.strip():
            return None, None

        cleaned = _NON_ALNUM.sub("", value).upper()
        vat_country = cleaned[:2] if re.match(r"^[A-Z]{2}", cleaned) else country

        pattern = VAT_PATTERNS.get(vat_country)
        if pattern:
            if not pattern.match(cleaned):
                errors.append(f"Invalid {vat_country} VAT number: {value}")
                return None, None
            return cleaned, vat_country

        if not 8 <= len(cleaned) <= 15:
            errors.append(f"Invalid VAT number: {value}")
            return None, None
        return cleaned, None

    @staticmethod
    def is_valid_phone(value: str) -> bool:
        digits = re.sub(r"\D", "", value)
        return 7 <= len(digits) <= 20

    @staticmethod
    def is_valid_website(value: str) -> bool:
        text = value.strip()
        parsed = urlparse(text if text.startswith("http") else f"https://{text}")
        return parsed.scheme in ("http", "https") and "." in (parsed.hostname or "")
