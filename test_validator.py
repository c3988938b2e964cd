"""Tests for supplier data validation and name normalization."""

import pytest

from core.errors import ValidationError
from supplier_resolver import SupplierValidator, generate_slug, normalize_supplier_name
from supplier_resolver.models import (
    Address,
    AttributeType,
    BankAccount,
    Contact,
    ContactType,
    Identifiers,
    SupplierIngestionData,
)
from supplier_resolver.normalize import attribute_hash, canonical_attribute, is_sparse_name, normalize_website


def data(**kwargs):
    kwargs.setdefault("name", "Acme Widgets Ltd")
    return SupplierIngestionData(**kwargs)


class TestNormalization:

    def test_normalize_supplier_name(self):
        assert normalize_supplier_name("  Acme   Widgets LTD ") == "acme widgets ltd"
        assert normalize_supplier_name(None) == ""

    @pytest.mark.parametrize("name, slug", [
        ("Acme & Sons (UK) Ltd", "acme-sons-uk-ltd"),
        ("  Acme  ", "acme"),
        ("Ünïcode Supplies", "n-code-supplies"),
        ("***", "supplier"),
    ])
    def test_generate_slug(self, name, slug):
        assert generate_slug(name) == slug

    def test_slug_is_truncated(self):
        slug = generate_slug("a" * 80)
        assert len(slug) == 50

    def test_sparse_names(self):
        assert is_sparse_name("") is True
        assert is_sparse_name("a") is True
        assert is_sparse_name("--") is True
        assert is_sparse_name("ab") is False

    def test_normalize_website(self):
        assert normalize_website("HTTPS://www.Acme.example/") == "acme.example"

    def test_address_identity_ignores_spacing_and_case(self):
        _, first = canonical_attribute(AttributeType.ADDRESS, {"line1": "1  High Street", "postal_code": "sw1a 1aa"})
        _, second = canonical_attribute(AttributeType.ADDRESS, Address(line1="1 high street", postal_code="SW1A 1AA"))
        assert attribute_hash(first) == attribute_hash(second)


class TestSupplierValidator:

    def test_minimal_data_is_valid(self):
        report = SupplierValidator.validate(data())

        assert report.company_number is None
        assert report.vat_number is None
        assert report.country == "GB"
        assert report.warnings == []

    def test_name_is_required(self):
        with pytest.raises(ValidationError) as exc:
            SupplierValidator.validate(data(name=None))
        assert exc.value.errors == ["Supplier name is required"]

    def test_name_length_limit(self):
        with pytest.raises(ValidationError):
            SupplierValidator.validate(data(name="x" * 201))

    @pytest.mark.parametrize("value, cleaned", [
        ("12345678", "12345678"),
        ("sc 123456", "SC123456"),
    ])
    def test_gb_company_numbers(self, value, cleaned):
        report = SupplierValidator.validate(data(identifiers=Identifiers(company_number=value)))
        assert report.company_number == cleaned

    def test_bad_gb_company_number(self):
        with pytest.raises(ValidationError):
            SupplierValidator.validate(data(identifiers=Identifiers(company_number="1234")))

    def test_company_number_for_other_country(self):
        report = SupplierValidator.validate(data(
            identifiers=Identifiers(company_number="hrb-12345"),
            addresses=[Address(line1="Hauptstrasse 1", country="de")],
        ))
        assert report.company_number == "HRB-12345"
        assert report.country == "DE"

    def test_vat_number_is_cleaned(self):
        report = SupplierValidator.validate(data(identifiers=Identifiers(vat_number="gb 123 4567 89")))
        assert report.vat_number == "GB123456789"

    def test_vat_country_comes_from_prefix(self):
        report = SupplierValidator.validate(data(identifiers=Identifiers(vat_number="DE123456789")))
        assert report.country == "DE"

    @pytest.mark.parametrize("value", ["GB12345", "DE12345678X", "123"])
    def test_bad_vat_numbers(self, value):
        with pytest.raises(ValidationError):
            SupplierValidator.validate(data(identifiers=Identifiers(vat_number=value)))

    def test_address_needs_first_line(self):
        with pytest.raises(ValidationError) as exc:
            SupplierValidator.validate(data(addresses=[Address(line1="  ")]))
        assert exc.value.errors == ["Address 1 has no first line"]

    def test_bank_account_needs_iban_or_number(self):
        with pytest.raises(ValidationError):
            SupplierValidator.validate(data(bank_accounts=[BankAccount(sort_code="12-34-56")]))

    def test_errors_are_collected(self):
        with pytest.raises(ValidationError) as exc:
            SupplierValidator.validate(data(
                name=None,
                identifiers=Identifiers(company_number="1"),
                bank_accounts=[BankAccount()],
            ))
        assert len(exc.value.errors) == 3

    def test_bad_contacts_are_warnings(self):
        report = SupplierValidator.validate(data(contacts=[
            Contact(type=ContactType.EMAIL, value="not-an-email"),
            Contact(type=ContactType.PHONE, value="123"),
            Contact(type=ContactType.WEBSITE, value="localhost"),
        ]))

        assert len(report.warnings) == 3

    def test_good_contacts_have_no_warnings(self):
        report = SupplierValidator.validate(data(contacts=[
            Contact(type=ContactType.EMAIL, value="billing@acme.example"),
            Contact(type=ContactType.PHONE, value="+44 20 7946 0000"),
            Contact(type=ContactType.WEBSITE, value="www.acme.example"),
        ]))

        assert report.warnings == []
