from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.middleware import current_request_id

from .enums import TERMINAL_STATES, TxnState


class Transaction(models.Model):
    """One PayU payment attempt.

    The request snapshot is written once by the request builder. State and the
    gateway columns are only ever changed through `TransactionRepository`.
    """

    txnid = models.CharField(max_length=64, unique=True)
    merchant_key = models.CharField(max_length=64)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    product_info = models.CharField(max_length=200)
    first_name = models.CharField(max_length=120)
    email = models.EmailField()
    phone = models.CharField(max_length=20, blank=True, default="")
    success_url = models.URLField(max_length=500)
    failure_url = models.URLField(max_length=500)
    udf1 = models.CharField(max_length=255, blank=True, default="")
    udf2 = models.CharField(max_length=255, blank=True, default="")
    udf3 = models.CharField(max_length=255, blank=True, default="")
    udf4 = models.CharField(max_length=255, blank=True, default="")
    udf5 = models.CharField(max_length=255, blank=True, default="")
    request_hash = models.CharField(max_length=128)

    # Internal references, by id only
    payment_record_id = models.BigIntegerField(db_index=True)
    user_ref = models.CharField(max_length=64, blank=True, default="")

    state = models.CharField(
        max_length=20, choices=TxnState.choices, default=TxnState.INITIATED
    )

    # Last verified gateway data
    gateway_txn_id = models.CharField(max_length=64, blank=True, default="")
    status_code = models.CharField(max_length=32, blank=True, default="")
    error_code = models.CharField(max_length=64, blank=True, default="")
    error_message = models.CharField(max_length=255, blank=True, default="")
    raw_response = models.JSONField(default=dict, blank=True)

    # Deferred side effect bookkeeping
    replay_payload = models.JSONField(null=True, blank=True)
    replay_attempts = models.PositiveIntegerField(default=0)
    next_replay_at = models.DateTimeField(null=True, blank=True)
    needs_manual_review = models.BooleanField(default=False)

    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["state", "created_at"], name="payments_txn_state_idx"),
            models.Index(fields=["next_replay_at"], name="payments_txn_replay_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gte=0), name="payments_txn_amount_non_negative"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.txnid} ({self.state})"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def as_request_fields(self) -> dict[str, str]:
        """Fields as they were signed, keyed by their PayU wire names."""
        return {
            "key": self.merchant_key,
            "txnid": self.txnid,
            "amount": self.amount,
            "productinfo": self.product_info,
            "firstname": self.first_name,
            "email": self.email,
            "udf1": self.udf1,
            "udf2": self.udf2,
            "udf3": self.udf3,
            "udf4": self.udf4,
            "udf5": self.udf5,
        }


class IdempotencyRecord(models.Model):
    """Ledger of applied gateway notifications.

    Keyed by (txnid, gateway txn id, status code); the unique constraint is the
    only thing that decides which of two concurrent deliveries wins.
    """

    txnid = models.CharField(max_length=64)
    gateway_txn_id = models.CharField(max_length=64)
    status_code = models.CharField(max_length=32)
    transaction = models.ForeignKey(
        Transaction, null=True, blank=True, on_delete=models.PROTECT, related_name="ledger_entries"
    )
    applied_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payments_idempotency"
        constraints = [
            models.UniqueConstraint(
                fields=["txnid", "gateway_txn_id", "status_code"],
                name="uniq_payments_notification",
            ),
        ]
        indexes = [
            models.Index(fields=["applied_at"], name="payments_idem_applied_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.txnid}:{self.gateway_txn_id}:{self.status_code}"


class AuditLog(models.Model):
    event = models.CharField(max_length=64)
    transaction = models.ForeignKey(Transaction, null=True, blank=True, on_delete=models.CASCADE)
    txnid = models.CharField(max_length=64, blank=True, default="", db_index=True)
    request_id = models.CharField(max_length=64, blank=True, default="")
    message = models.TextField(blank=True, default="")
    meta = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["event", "created_at"], name="payments_audit_event_idx")]

    @classmethod
    def log(
        cls,
        *,
        event: str,
        transaction: Transaction | None = None,
        txnid: str = "",
        request_id: str = "",
        message: str = "",
        meta: dict | None = None,
    ):
        return cls.objects.create(
            event=event,
            transaction=transaction,
            txnid=txnid or getattr(transaction, "txnid", ""),
            request_id=request_id or current_request_id(),
            message=message,
            meta=meta or {},
        )
