import pytest
from django.db import IntegrityError, transaction

from payments import ledger
from payments.ledger import IdempotencyKey
from payments.models import IdempotencyRecord

pytestmark = pytest.mark.django_db


def test_first_claim_wins():
    key = IdempotencyKey("PG1", "9001", "success")
    first = ledger.try_claim(key)
    second = ledger.try_claim(key)

    assert first.claimed and first.record.pk
    assert not second.claimed and second.record is None
    assert IdempotencyRecord.objects.count() == 1
    assert ledger.is_claimed(key)


def test_lost_claim_leaves_outer_transaction_usable():
    key = IdempotencyKey("PG1", "9001", "success")
    with transaction.atomic():
        ledger.try_claim(key)
        assert not ledger.try_claim(key).claimed
        ledger.try_claim(IdempotencyKey("PG1", "9001", "failure"))
    assert IdempotencyRecord.objects.count() == 2


def test_claim_rolls_back_with_its_transaction():
    key = IdempotencyKey("PG2", "9002", "success")

    class Boom(Exception):
        pass

    with pytest.raises(Boom):
        with transaction.atomic():
            assert ledger.try_claim(key).claimed
            raise Boom
    assert not ledger.is_claimed(key)
    assert ledger.try_claim(key).claimed


def test_each_key_part_distinguishes():
    base = IdempotencyKey("PG3", "1", "pending")
    for key in (base, IdempotencyKey("PG3", "2", "pending"), IdempotencyKey("PG3", "1", "success")):
        assert ledger.try_claim(key).claimed


def test_unique_constraint_is_enforced_by_the_database():
    IdempotencyRecord.objects.create(txnid="PG4", gateway_txn_id="1", status_code="success")
    with pytest.raises(IntegrityError), transaction.atomic():
        IdempotencyRecord.objects.create(txnid="PG4", gateway_txn_id="1", status_code="success")


def test_key_text():
    assert str(IdempotencyKey("PG5", "77", "success")) == "PG5:77:success"
