from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework.test import APIClient

from payments import signing
from payments.audit import gateway_response_for
from payments.enums import TxnState
from payments.models import Transaction
from subscriptions.models import PaymentRecord, Plan, Subscription

pytestmark = pytest.mark.django_db

HOST = "app.example.com"


@pytest.fixture
def user_factory():
    User = get_user_model()
    counter = {"i": 0}

    def make(**kwargs):
        counter["i"] += 1
        return User.objects.create_user(
            username=kwargs.get("username", f"u{counter['i']}"),
            email=kwargs.get("email", f"u{counter['i']}@example.com"),
            password="pass",
            first_name=kwargs.get("first_name", "Asha"),
        )

    return make


@pytest.fixture
def record_for():
    plan = Plan.objects.create(code="pro", name="Pro", monthly_price=Decimal("499.00"), token_allowance=500)

    def make(user, **kwargs):
        subscription = Subscription.objects.create(user=user, plan=plan)
        return PaymentRecord.objects.create(
            user=user,
            subscription=subscription,
            description=kwargs.get("description", "Pro plan"),
            amount=kwargs.get("amount", Decimal("499.00")),
            status=kwargs.get("status", PaymentRecord.Status.CREATED),
        )

    return make


def api(user=None):
    client = APIClient()
    if user is not None:
        client.force_authenticate(user)
    return client


def checkout(client, **data):
    return client.post(reverse("v1-payments-checkout"), data, format="json", HTTP_HOST=HOST)


def test_checkout_returns_signed_form(user_factory, record_for):
    user = user_factory()
    record = record_for(user)

    r = checkout(api(user), payment_record_id=record.pk, phone="0712345678")
    assert r.status_code == 201, r.content
    body = r.json()
    fields = body["fields"]

    assert body["ok"] is True
    assert body["action"] == "https://test.payu.in/_payment"
    assert fields["amount"] == "499.00"
    assert fields["udf1"] == "pro"
    assert fields["udf3"] == str(user.pk)
    assert fields["udf4"] == str(record.pk)
    assert fields["surl"] == f"http://{HOST}/payments/payu/return/"
    assert signing.verify(fields, "test-salt", fields["hash"])

    txn = Transaction.objects.get(txnid=body["txnid"])
    assert txn.state == TxnState.INITIATED
    assert txn.payment_record_id == record.pk


def test_checkout_requires_login(user_factory, record_for):
    record = record_for(user_factory())
    r = checkout(api(), payment_record_id=record.pk)
    assert r.status_code in (401, 403)


def test_cannot_pay_for_someone_elses_record(user_factory, record_for):
    owner, other = user_factory(), user_factory()
    record = record_for(owner)
    r = checkout(api(other), payment_record_id=record.pk)
    assert r.status_code == 404
    assert Transaction.objects.count() == 0


def test_paid_record_is_conflict(user_factory, record_for):
    user = user_factory()
    record = record_for(user, status=PaymentRecord.Status.PAID)
    r = checkout(api(user), payment_record_id=record.pk)
    assert r.status_code == 409
    assert r.json()["error"] == "payment_already_paid"


def test_cancelled_payment_can_be_retried(user_factory, record_for):
    user = user_factory()
    record = record_for(user)
    client = api(user)
    first = checkout(client, payment_record_id=record.pk).json()

    cancel = gateway_response_for(
        first["fields"], status="cancel", gateway_txn_id="403993715521", secret="test-salt"
    )
    assert APIClient().post(reverse("payments:payu-webhook"), cancel).status_code == 200
    record.refresh_from_db()
    assert record.status == PaymentRecord.Status.CANCELLED

    retry = checkout(client, payment_record_id=record.pk)
    assert retry.status_code == 201, retry.content
    second = retry.json()
    assert second["txnid"] != first["txnid"]
    assert Transaction.objects.get(txnid=first["txnid"]).state == TxnState.CANCELLED

    paid = gateway_response_for(
        second["fields"], status="success", gateway_txn_id="403993715522", secret="test-salt"
    )
    APIClient().post(reverse("payments:payu-webhook"), paid)
    record.refresh_from_db()
    assert record.status == PaymentRecord.Status.PAID
    assert checkout(client, payment_record_id=record.pk).status_code == 409


def test_builder_errors_come_back_per_field(user_factory, record_for):
    user = user_factory()
    record = record_for(user, amount=Decimal("0.50"))
    r = checkout(api(user), payment_record_id=record.pk)
    assert r.status_code == 400
    assert "amount" in r.json()["errors"]


def test_missing_gateway_credentials_is_503(user_factory, record_for, settings):
    settings.PAYU_MERCHANT_SALT = ""
    user = user_factory()
    record = record_for(user)
    r = checkout(api(user), payment_record_id=record.pk)
    assert r.status_code == 503
    assert r.json()["error"] == "gateway_not_configured"


def test_transaction_status_is_scoped_to_owner(user_factory, record_for):
    user, other = user_factory(), user_factory()
    txnid = checkout(api(user), payment_record_id=record_for(user).pk).json()["txnid"]
    url = reverse("v1-payments-transaction", args=[txnid])

    r = api(user).get(url)
    assert r.status_code == 200
    assert r.json()["state"] == "initiated"
    assert r.json()["amount"] == "499.00"

    assert api(other).get(url).status_code == 404
