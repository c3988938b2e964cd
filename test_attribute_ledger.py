"""Tests for the supplier attribute ledger and primary arbitration."""

import pytest

from core.errors import PersistenceError
from core.observability.metrics import get_metrics
from supplier_resolver import AttributeLedger, SupplierRepository
from supplier_resolver.models import AttributeType, DataSource, MatchingConfig, RankingField

HIGH_STREET = {"line1": "1 High Street", "city": "London", "postal_code": "sw1a 1aa"}
MARKET_SQUARE = {"line1": "2 Market Square", "city": "Leeds", "postal_code": "LS1 1AA"}


@pytest.fixture
def repository():
    return SupplierRepository()


@pytest.fixture
def supplier(db, repository):
    with db.transaction() as conn:
        return repository.insert_supplier(conn, "t1", "Acme Widgets Ltd")


@pytest.fixture
def ledger(db, repository):
    return AttributeLedger(db, repository=repository)


def record(ledger, supplier, value, attribute_type=AttributeType.ADDRESS, confidence=None,
           source=DataSource.INVOICE):
    return ledger.record_attribute(supplier.id, attribute_type, value, source=source,
                                   source_id="ext-1", confidence=confidence)


class TestObservations:

    def test_first_sighting(self, ledger, supplier):
        result = record(ledger, supplier, HIGH_STREET)

        assert result.created is True
        assert result.attribute.seen_count == 1
        assert result.attribute.confidence == 70
        assert result.attribute.value["postal_code"] == "SW1A 1AA"
        assert result.attribute.source == DataSource.INVOICE
        assert result.attribute.source_id == "ext-1"

    def test_manual_default_confidence(self, ledger, supplier):
        result = record(ledger, supplier, HIGH_STREET, source=DataSource.MANUAL)

        assert result.attribute.confidence == 80

    def test_higher_confidence_resighting_takes_new_value(self, ledger, supplier):
        first = record(ledger, supplier, HIGH_STREET, confidence=70)
        again = record(ledger, supplier, HIGH_STREET, confidence=90)

        assert again.created is False
        assert again.attribute.id == first.attribute.id
        assert again.attribute.seen_count == 2
        assert again.attribute.confidence == 90
        assert again.attribute.last_seen_at >= first.attribute.last_seen_at
        assert again.attribute.first_seen_at == first.attribute.first_seen_at

    def test_equal_confidence_resighting_ratchets_up(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET, confidence=70)
        again = record(ledger, supplier, HIGH_STREET, confidence=70)

        assert again.attribute.confidence == 75

    def test_confidence_is_capped(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET, confidence=98)
        again = record(ledger, supplier, HIGH_STREET, confidence=98)

        assert again.attribute.confidence == 100

    def test_lower_confidence_resighting_never_lowers(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET, confidence=90)
        again = record(ledger, supplier, HIGH_STREET, confidence=50)

        assert again.attribute.confidence == 95

    def test_bank_account_formatting_is_the_same_fact(self, ledger, supplier):
        first = record(ledger, supplier, {"sort_code": "12-34-56", "account_number": "1234 5678"},
                       attribute_type=AttributeType.BANK_ACCOUNT)
        again = record(ledger, supplier, {"sort_code": "123456", "account_number": "12345678",
                                          "account_name": "Acme Widgets"},
                       attribute_type=AttributeType.BANK_ACCOUNT)

        assert again.attribute.id == first.attribute.id
        assert again.attribute.hash == first.attribute.hash
        assert again.attribute.seen_count == 2

    def test_iban_spacing_and_case(self, ledger, supplier):
        first = record(ledger, supplier, {"iban": "GB29 NWBK 6016 1331 9268 19"},
                       attribute_type=AttributeType.BANK_ACCOUNT)
        again = record(ledger, supplier, {"iban": "gb29nwbk60161331926819"},
                       attribute_type=AttributeType.BANK_ACCOUNT)

        assert again.attribute.id == first.attribute.id

    def test_email_case(self, ledger, supplier):
        first = record(ledger, supplier, "Billing@Acme.com", attribute_type=AttributeType.EMAIL)
        again = record(ledger, supplier, " billing@acme.com", attribute_type=AttributeType.EMAIL)

        assert again.attribute.id == first.attribute.id
        assert again.attribute.value == {"address": "billing@acme.com"}

    def test_different_values_are_separate_rows(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET)
        record(ledger, supplier, MARKET_SQUARE)

        assert len(ledger.get_attributes(supplier.id, AttributeType.ADDRESS)) == 2

    def test_joins_caller_transaction(self, db, ledger, supplier):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                ledger.record_attribute(supplier.id, AttributeType.ADDRESS, HIGH_STREET,
                                        source=DataSource.INVOICE, conn=conn)
                raise RuntimeError("abort")

        assert ledger.get_attributes(supplier.id) == []


class TestPrimaryArbitration:

    def test_first_value_becomes_primary(self, ledger, supplier):
        result = record(ledger, supplier, HIGH_STREET)

        assert result.primary_changed is True
        assert result.attribute.is_primary is True

    def test_higher_ranked_value_takes_primary(self, db, ledger, repository, supplier):
        old = record(ledger, supplier, HIGH_STREET, confidence=70)
        new = record(ledger, supplier, MARKET_SQUARE, confidence=90)

        assert new.primary_changed is True
        with db.read() as conn:
            primary = repository.get_primary(conn, supplier.id, AttributeType.ADDRESS)
            assert repository.get_attribute(conn, old.attribute.id).is_primary is False
        assert primary.id == new.attribute.id

    def test_lower_ranked_value_does_not_take_primary(self, ledger, supplier):
        old = record(ledger, supplier, HIGH_STREET, confidence=90)
        new = record(ledger, supplier, MARKET_SQUARE, confidence=70)

        assert new.primary_changed is False
        assert new.attribute.is_primary is False
        primaries = [a for a in ledger.get_attributes(supplier.id) if a.is_primary]
        assert [a.id for a in primaries] == [old.attribute.id]

    def test_equal_rank_keeps_holder(self, db, repository, supplier):
        ledger = AttributeLedger(db, MatchingConfig(primary_ranking=(RankingField.CONFIDENCE,)), repository)
        old = record(ledger, supplier, HIGH_STREET, confidence=80)
        new = record(ledger, supplier, MARKET_SQUARE, confidence=80)

        assert new.primary_changed is False
        with db.read() as conn:
            assert repository.get_primary(conn, supplier.id, AttributeType.ADDRESS).id == old.attribute.id

    def test_resighting_the_primary_changes_nothing(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET)
        again = record(ledger, supplier, HIGH_STREET)

        assert again.primary_changed is False
        assert again.attribute.is_primary is True

    def test_ranking_policy_is_configurable(self, db, repository, supplier):
        by_frequency = AttributeLedger(
            db, MatchingConfig(primary_ranking=(RankingField.SEEN_COUNT, RankingField.CONFIDENCE)), repository,
        )
        old = record(by_frequency, supplier, HIGH_STREET, confidence=70)
        record(by_frequency, supplier, HIGH_STREET, confidence=70)
        new = record(by_frequency, supplier, MARKET_SQUARE, confidence=90)

        assert new.primary_changed is False
        with db.read() as conn:
            assert repository.get_primary(conn, supplier.id, AttributeType.ADDRESS).id == old.attribute.id

    def test_primary_is_per_attribute_type(self, ledger, supplier):
        address = record(ledger, supplier, HIGH_STREET)
        email = record(ledger, supplier, "billing@acme.com", attribute_type=AttributeType.EMAIL)

        assert address.attribute.is_primary is True
        assert email.attribute.is_primary is True

    def test_second_primary_is_rejected_by_storage(self, db, ledger, repository, supplier):
        record(ledger, supplier, HIGH_STREET)
        other = record(ledger, supplier, MARKET_SQUARE, confidence=10)

        with pytest.raises(PersistenceError):
            with db.transaction() as conn:
                repository.set_primary(conn, other.attribute.id)

    def test_records_metrics(self, ledger, supplier):
        record(ledger, supplier, HIGH_STREET, confidence=70)
        record(ledger, supplier, MARKET_SQUARE, confidence=90)
        record(ledger, supplier, MARKET_SQUARE, confidence=90)

        summary = get_metrics().get_summary()["suppliers"]
        assert summary["attributes_recorded"] == 3
        assert summary["primary_changes"] == 2


class TestDeactivation:

    def test_deactivating_primary_promotes_successor(self, db, ledger, repository, supplier):
        primary = record(ledger, supplier, HIGH_STREET, confidence=90)
        runner_up = record(ledger, supplier, MARKET_SQUARE, confidence=70)

        assert ledger.deactivate_attribute(primary.attribute.id) is True

        with db.read() as conn:
            promoted = repository.get_primary(conn, supplier.id, AttributeType.ADDRESS)
        assert promoted.id == runner_up.attribute.id
        assert [a.id for a in ledger.get_attributes(supplier.id)] == [runner_up.attribute.id]

    def test_deactivating_non_primary_keeps_primary(self, db, ledger, repository, supplier):
        primary = record(ledger, supplier, HIGH_STREET, confidence=90)
        other = record(ledger, supplier, MARKET_SQUARE, confidence=70)

        ledger.deactivate_attribute(other.attribute.id)

        with db.read() as conn:
            assert repository.get_primary(conn, supplier.id, AttributeType.ADDRESS).id == primary.attribute.id

    def test_deactivate_twice(self, ledger, supplier):
        attribute = record(ledger, supplier, HIGH_STREET).attribute

        assert ledger.deactivate_attribute(attribute.id) is True
        assert ledger.deactivate_attribute(attribute.id) is False
        assert ledger.deactivate_attribute("missing") is False

    def test_inactive_value_seen_again_stays_inactive(self, ledger, supplier):
        attribute = record(ledger, supplier, HIGH_STREET).attribute
        ledger.deactivate_attribute(attribute.id)

        again = record(ledger, supplier, HIGH_STREET)

        assert again.attribute.is_active is False
        assert again.attribute.is_primary is False
        assert again.attribute.seen_count == 2
