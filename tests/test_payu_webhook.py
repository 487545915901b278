from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.test import TestCase, override_settings
from django.urls import reverse

from payments.audit import gateway_response_for
from payments.builder import PaymentIntent, RequestBuilder
from payments.config import GatewayConfig
from payments.enums import TxnState
from payments.models import AuditLog, IdempotencyRecord, Transaction
from subscriptions.models import PaymentRecord, Plan, Subscription, TokenBalance


class PayUTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="u", password="p", email="u@example.com")
        plan = Plan.objects.create(code="pro", name="Pro", monthly_price=Decimal("499.00"), token_allowance=1000)
        self.subscription = Subscription.objects.create(user=self.user, plan=plan)
        self.record = PaymentRecord.objects.create(
            user=self.user,
            subscription=self.subscription,
            description="Pro plan",
            amount=Decimal("499.00"),
        )

    def build(self, payment_record_id=None):
        intent = PaymentIntent(
            amount="499.00",
            product_info="Pro plan",
            first_name="U",
            email=self.user.email,
            success_url="https://app.example.com/payments/payu/return/",
            failure_url="https://app.example.com/payments/payu/return/",
            payment_record_id=payment_record_id or self.record.pk,
            user_ref=str(self.user.pk),
            plan_code="pro",
        )
        return RequestBuilder(GatewayConfig.from_settings()).build(intent)

    def post(self, payload, name="payments:payu-webhook"):
        return self.client.post(reverse(name), payload)

    def respond(self, req, status="success", secret="test-salt", **kwargs):
        return gateway_response_for(
            req.as_form(), status=status, gateway_txn_id="403993715521", secret=secret, **kwargs
        )


class PayUWebhookTests(PayUTestCase):
    def test_success_settles_subscription(self):
        req = self.build()
        resp = self.post(self.respond(req))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True})
        self.assertEqual(Transaction.objects.get(txnid=req.txnid).state, TxnState.SUCCESS)
        self.record.refresh_from_db()
        self.subscription.refresh_from_db()
        self.assertEqual(self.record.status, PaymentRecord.Status.PAID)
        self.assertEqual(self.subscription.status, Subscription.Status.ACTIVE)
        self.assertEqual(TokenBalance.objects.get(user=self.user).tokens, 1000)

    def test_redelivery_is_acknowledged_and_not_reapplied(self):
        req = self.build()
        payload = self.respond(req)
        self.post(payload)
        resp = self.post(payload)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(TokenBalance.objects.get(user=self.user).tokens, 1000)
        self.assertEqual(IdempotencyRecord.objects.filter(txnid=req.txnid).count(), 1)
        self.assertTrue(AuditLog.objects.filter(event="DUPLICATE_NOTIFICATION", txnid=req.txnid).exists())

    def test_bad_signature_is_400_and_alerts(self):
        req = self.build()
        resp = self.post(self.respond(req, secret="forged"))

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"ok": False})
        self.assertEqual(Transaction.objects.get(txnid=req.txnid).state, TxnState.INITIATED)
        self.assertTrue(
            AuditLog.objects.filter(event="SECURITY_ALERT", meta__reason="signature_mismatch").exists()
        )
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, PaymentRecord.Status.CREATED)

    def test_amount_mismatch_is_400(self):
        req = self.build()
        resp = self.post(self.respond(req, amount="1.00"))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(Transaction.objects.get(txnid=req.txnid).state, TxnState.INITIATED)

    def test_malformed_is_400(self):
        resp = self.post({"txnid": "PG1", "status": "success"})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_transaction_is_accepted_and_ignored(self):
        req = self.build()
        payload = gateway_response_for(
            {**req.as_form(), "txnid": "PGUNKNOWN"}, status="success", gateway_txn_id="1", secret="test-salt"
        )
        resp = self.post(payload)
        self.assertEqual(resp.status_code, 202)
        self.assertFalse(Transaction.objects.filter(txnid="PGUNKNOWN").exists())

    def test_failed_side_effect_asks_for_redelivery(self):
        req = self.build(payment_record_id=987654)
        resp = self.post(self.respond(req))

        self.assertEqual(resp.status_code, 503)
        txn = Transaction.objects.get(txnid=req.txnid)
        self.assertEqual(txn.state, TxnState.INITIATED)
        self.assertIsNotNone(txn.replay_payload)
        self.assertIsNotNone(txn.next_replay_at)

    def test_lock_timeout_in_side_effect_is_503_and_parked(self):
        req = self.build()
        with patch.object(
            PaymentRecord.objects, "select_for_update", side_effect=OperationalError("lock timeout")
        ):
            resp = self.post(self.respond(req))

        self.assertEqual(resp.status_code, 503)
        txn = Transaction.objects.get(txnid=req.txnid)
        self.assertEqual(txn.state, TxnState.INITIATED)
        self.assertIsNotNone(txn.replay_payload)

    def test_failure_marks_record_failed(self):
        req = self.build()
        self.post(self.respond(req, status="failure", error="E308", error_message="Declined"))

        txn = Transaction.objects.get(txnid=req.txnid)
        self.assertEqual(txn.state, TxnState.FAILURE)
        self.assertEqual(txn.error_code, "E308")
        self.record.refresh_from_db()
        self.assertEqual(self.record.status, PaymentRecord.Status.FAILED)

    def test_get_is_not_allowed(self):
        resp = self.client.get(reverse("payments:payu-webhook"))
        self.assertEqual(resp.status_code, 405)


class PayUReturnTests(PayUTestCase):
    def test_return_redirects_with_state(self):
        req = self.build()
        resp = self.post(self.respond(req), name="payments:payu-return")

        self.assertEqual(resp.status_code, 302)
        self.assertEqual(resp["Location"], f"/billing/result/?txnid={req.txnid}&state=success")

    def test_return_for_unknown_txnid(self):
        resp = self.post({"txnid": "PGNOPE"}, name="payments:payu-return")
        self.assertEqual(resp.status_code, 302)
        self.assertEqual(resp["Location"], "/billing/result/?txnid=&state=unknown")

    @override_settings(PAYMENTS_RESULT_URL="https://app.example.com/billing/result/?tab=payments&state=stale")
    def test_return_keeps_existing_result_query(self):
        req = self.build()
        resp = self.post(self.respond(req), name="payments:payu-return")

        self.assertEqual(
            resp["Location"],
            f"https://app.example.com/billing/result/?tab=payments&txnid={req.txnid}&state=success",
        )
