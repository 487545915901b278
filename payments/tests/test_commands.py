from datetime import timedelta
from io import StringIO
from unittest import mock

import pytest
from django.core.management import call_command
from django.utils import timezone

from payments.enums import TxnState
from payments.ledger import IdempotencyKey, try_claim
from payments.models import IdempotencyRecord, Transaction

pytestmark = pytest.mark.django_db


def test_purge_only_touches_old_entries_of_closed_transactions(build_request):
    closed, open_ = build_request(), build_request()
    Transaction.objects.filter(txnid=closed.txnid).update(state=TxnState.SUCCESS)
    for req in (closed, open_):
        txn = Transaction.objects.get(txnid=req.txnid)
        try_claim(IdempotencyKey(req.txnid, "1", "success"), txn=txn)
    IdempotencyRecord.objects.update(applied_at=timezone.now() - timedelta(days=500))

    out = StringIO()
    call_command("purge_idempotency_keys", stdout=out)

    assert "Purged 1" in out.getvalue()
    assert list(IdempotencyRecord.objects.values_list("txnid", flat=True)) == [open_.txnid]


def test_purge_respects_days(build_request):
    req = build_request()
    Transaction.objects.filter(txnid=req.txnid).update(state=TxnState.FAILURE)
    try_claim(IdempotencyKey(req.txnid, "1", "failure"), txn=Transaction.objects.get(txnid=req.txnid))
    IdempotencyRecord.objects.update(applied_at=timezone.now() - timedelta(days=10))

    call_command("purge_idempotency_keys", "--days", "30", stdout=StringIO())
    assert IdempotencyRecord.objects.count() == 1
    call_command("purge_idempotency_keys", "--days", "5", stdout=StringIO())
    assert IdempotencyRecord.objects.count() == 0


def test_reconcile_payments_sync():
    out = StringIO()
    with mock.patch(
        "payments.management.commands.reconcile_payments.replay_deferred_notifications",
        return_value={"replayed": 0, "deferred": 0},
    ) as replay, mock.patch(
        "payments.management.commands.reconcile_payments.reconcile_stale_transactions",
        return_value={"checked": 0},
    ) as stale:
        call_command("reconcile_payments", "--sync", "--max-age-mins", "45", stdout=out)

    replay.assert_called_once_with(limit=200)
    stale.assert_called_once_with(max_age_mins=45, limit=200, dry_run=False)
    assert "Done" in out.getvalue()


def test_reconcile_payments_dry_run_skips_replay():
    with mock.patch(
        "payments.management.commands.reconcile_payments.replay_deferred_notifications"
    ) as replay, mock.patch(
        "payments.management.commands.reconcile_payments.reconcile_stale_transactions",
        return_value={},
    ):
        call_command("reconcile_payments", "--sync", "--dry-run", stdout=StringIO())
    replay.assert_not_called()
