"""Build supplier ingestion requests from invoice extractions."""

import re
from typing import Any, Mapping, Optional, Union

from dedup.models import ExtractedFields
from supplier_resolver.models import (
    Address,
    BankAccount,
    Contact,
    ContactType,
    DataSource,
    Identifiers,
    SupplierIngestionData,
    SupplierIngestionRequest,
)

DEFAULT_COUNTRY = "GB"

_IBAN = re.compile(r"[A-Z]{2}\d{2}[A-Z0-9]{10,30}")
_VAT_LIKE = re.compile(r"^[A-Z]{2}[0-9A-Z]{8,13}$")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _vat_number(value: Any, country: str) -> Optional[str]:
    """Keep only values that look like a VAT registration.

    Tax ids from other schemes (e.g. US EINs) are dropped rather than
    failing validation for the whole supplier.
    """
    text = _text(value)
    if not text:
        return None
    cleaned = _NON_ALNUM.sub("", text).upper()
    if cleaned.isdigit():
        cleaned = f"{country}{cleaned}"
    return cleaned if _VAT_LIKE.match(cleaned) else None


def parse_bank_account(value: Any) -> Optional[BankAccount]:
    """Bank details from a free-text string or a structured mapping."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        iban = _IBAN.search(text.replace(" ", "").upper())
        if iban:
            return BankAccount(iban=iban.group(0))
        return BankAccount(account_number=text)

    if isinstance(value, Mapping):
        account = BankAccount(
            iban=_text(value.get("iban")),
            account_number=_text(value.get("accountNumber") or value.get("account_number")),
            sort_code=_text(value.get("sortCode") or value.get("sort_code")),
            account_name=_text(value.get("accountName") or value.get("account_name")),
            bank_name=_text(value.get("bankName") or value.get("bank_name")),
        )
        if account.iban or account.account_number:
            return account
    return None


def build_supplier_request(
    extraction_id: str,
    fields: Union[ExtractedFields, Mapping[str, Any]],
    tenant_id: str,
    user_id: Optional[str] = None,
) -> Optional[SupplierIngestionRequest]:
    """Turn an invoice extraction's vendor fields into a SupplierIngestionRequest.

    Returns None when there is no vendor name to resolve.
    """
    if not isinstance(fields, ExtractedFields):
        fields = ExtractedFields.from_mapping(fields)

    name = _text(fields.value_of("vendor_name"))
    if not name:
        return None

    country = (_text(fields.value_of("vendor_country")) or DEFAULT_COUNTRY).upper()

    addresses = []
    line1 = _text(fields.value_of("vendor_address_line1"))
    if line1:
        addresses.append(Address(
            line1=line1,
            city=_text(fields.value_of("vendor_city")),
            postal_code=_text(fields.value_of("vendor_postal_code")),
            country=country,
        ))

    contacts = []
    email = _text(fields.value_of("vendor_email"))
    phone = _text(fields.value_of("vendor_phone"))
    website = _text(fields.value_of("vendor_website"))
    if email:
        contacts.append(Contact(type=ContactType.EMAIL, value=email, is_primary=True))
    if phone:
        contacts.append(Contact(type=ContactType.PHONE, value=phone, is_primary=not email))
    if website:
        contacts.append(Contact(type=ContactType.WEBSITE, value=website))

    bank_accounts = []
    account = parse_bank_account(fields.value_of("bank_account"))
    if account:
        bank_accounts.append(account)

    # Extractor confidence (0-1) becomes attribute confidence (0-100) when reported
    confidence = None
    if fields.vendor_name.confidence < 1.0:
        confidence = int(round(fields.vendor_name.confidence * 100))

    return SupplierIngestionRequest(
        tenant_id=tenant_id,
        source=DataSource.INVOICE,
        source_id=extraction_id,
        user_id=user_id,
        confidence=confidence,
        data=SupplierIngestionData(
            name=name,
            identifiers=Identifiers(
                company_number=_text(fields.value_of("vendor_company_number")),
                vat_number=_vat_number(fields.value_of("vendor_vat_number"), country),
            ),
            addresses=addresses,
            contacts=contacts,
            bank_accounts=bank_accounts,
        ),
    )
