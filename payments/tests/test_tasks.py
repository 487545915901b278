from datetime import timedelta
from unittest import mock

import pytest
from django.utils import timezone

from payments.enums import MessageSource, TxnState
from payments.exceptions import GatewayError
from payments.models import AuditLog, Transaction
from payments.tasks import reconcile_stale_transactions, replay_deferred_notifications
from payments.verifier import GatewayMessage, VerifiedMessage

pytestmark = pytest.mark.django_db

applied = []


def record_side_effect(payment_record_id, outcome, *, timeout=None):
    applied.append((payment_record_id, str(outcome)))
    return "ok"


@pytest.fixture(autouse=True)
def recording_side_effect(settings):
    applied.clear()
    settings.PAYMENTS_SIDE_EFFECT = "payments.tests.test_tasks.record_side_effect"
    yield
    applied.clear()


def park(txnid, *, due=True, status="success"):
    message = VerifiedMessage(
        txnid=txnid,
        gateway_txn_id="403993715521",
        status_code=status,
        outcome=status,
        amount="499.00",
    )
    when = timezone.now() + timedelta(minutes=-1 if due else 10)
    Transaction.objects.filter(txnid=txnid).update(
        replay_payload={**message.to_payload(), "first_deferred_at": timezone.now().isoformat()},
        replay_attempts=1,
        next_replay_at=when,
    )


def test_replay_applies_due_messages(build_request):
    due = build_request()
    later = build_request()
    park(due.txnid)
    park(later.txnid, due=False)

    summary = replay_deferred_notifications()

    assert summary == {"replayed": 1, "deferred": 0}
    assert applied == [(42, "success")]
    txn = Transaction.objects.get(txnid=due.txnid)
    assert txn.state == TxnState.SUCCESS
    assert txn.replay_payload is None
    assert Transaction.objects.get(txnid=later.txnid).replay_payload is not None


def test_replay_defers_again_while_side_effect_fails(build_request, settings):
    settings.PAYMENTS_SIDE_EFFECT = "subscriptions.services.apply_side_effect"
    req = build_request(payment_record_id=999999)
    park(req.txnid)

    summary = replay_deferred_notifications()

    assert summary == {"replayed": 0, "deferred": 1}
    txn = Transaction.objects.get(txnid=req.txnid)
    assert txn.state == TxnState.INITIATED
    assert txn.replay_attempts == 2
    assert txn.next_replay_at > timezone.now()


def backdate(txnid, minutes=60):
    Transaction.objects.filter(txnid=txnid).update(created_at=timezone.now() - timedelta(minutes=minutes))


def gateway_says(txnid, status="success", amount="499.00"):
    return GatewayMessage.from_payload(
        {"txnid": txnid, "status": status, "amount": amount, "mihpayid": "403993715530"},
        source=MessageSource.VERIFY_API,
    )


def test_stale_transactions_are_verified_and_applied(build_request):
    req = build_request()
    fresh = build_request()
    backdate(req.txnid)

    with mock.patch("payments.gateway_client.verify_payment", return_value=gateway_says(req.txnid)) as verify:
        summary = reconcile_stale_transactions()

    verify.assert_called_once()
    assert summary == {"checked": 1, "reconciled": 1, "not_found": 0, "rejected": 0, "errors": 0}
    assert Transaction.objects.get(txnid=req.txnid).state == TxnState.SUCCESS
    assert Transaction.objects.get(txnid=fresh.txnid).state == TxnState.INITIATED
    assert AuditLog.objects.filter(event="RECONCILED", txnid=req.txnid).exists()


def test_stale_dry_run_changes_nothing(build_request):
    req = build_request()
    backdate(req.txnid)

    with mock.patch("payments.gateway_client.verify_payment", return_value=gateway_says(req.txnid)):
        summary = reconcile_stale_transactions(dry_run=True)

    assert summary["checked"] == 1 and summary["reconciled"] == 0
    assert Transaction.objects.get(txnid=req.txnid).state == TxnState.INITIATED
    assert applied == []


def test_stale_counts_not_found_errors_and_rejections(build_request):
    missing, broken, wrong = build_request(), build_request(), build_request()
    for req in (missing, broken, wrong):
        backdate(req.txnid)

    def answer(config, txnid, **kwargs):
        if txnid == missing.txnid:
            return None
        if txnid == broken.txnid:
            raise GatewayError("payu_unavailable", "down")
        return gateway_says(txnid, amount="1.00")

    with mock.patch("payments.gateway_client.verify_payment", side_effect=answer):
        summary = reconcile_stale_transactions()

    assert summary == {"checked": 3, "reconciled": 0, "not_found": 1, "rejected": 1, "errors": 1}
    assert set(Transaction.objects.values_list("state", flat=True)) == {TxnState.INITIATED}
