from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from django.db import transaction
from django.utils import timezone

from . import ledger
from .enums import ALLOWED_TRANSITIONS, TERMINAL_STATES, TxnState
from .exceptions import InvalidTransition
from .ledger import Claim, IdempotencyKey
from .models import AuditLog, Transaction

logger = logging.getLogger(__name__)

GATEWAY_COLUMNS = ("gateway_txn_id", "status_code", "error_code", "error_message", "raw_response")


class TransactionRepository:
    """Durable store behind the builder, verifier and reconciler.

    The only place that writes `Transaction` rows. Callers that need several
    operations to commit together wrap them in `transaction.atomic()`.
    """

    def create_transaction(self, **fields: Any) -> Transaction:
        txn = Transaction.objects.create(state=TxnState.INITIATED, **fields)
        AuditLog.log(
            event="PAYMENT_INIT",
            transaction=txn,
            meta={"amount": str(txn.amount), "payment_record_id": txn.payment_record_id},
        )
        return txn

    def load_transaction(self, txnid: str, *, for_update: bool = False) -> Transaction | None:
        if not txnid:
            return None
        qs = Transaction.objects.all()
        if for_update:
            qs = qs.select_for_update()
        return qs.filter(txnid=txnid).first()

    @transaction.atomic
    def transition_transaction(
        self, txnid: str, new_state: str, *, gateway: dict[str, Any] | None = None
    ) -> Transaction:
        txn = Transaction.objects.select_for_update().get(txnid=txnid)
        previous = txn.state
        if new_state not in ALLOWED_TRANSITIONS.get(previous, frozenset()):
            raise InvalidTransition(txnid, previous, new_state)

        txn.state = new_state
        update_fields = ["state", "updated_at"]
        update_fields += self._apply_gateway(txn, gateway)
        if new_state in TERMINAL_STATES:
            txn.closed_at = timezone.now()
            txn.replay_payload = None
            txn.next_replay_at = None
            txn.needs_manual_review = False
            update_fields += ["closed_at", "replay_payload", "next_replay_at", "needs_manual_review"]
        txn.save(update_fields=update_fields)

        AuditLog.log(
            event="STATE_TRANSITION",
            transaction=txn,
            meta={"from": previous, "to": new_state, "status_code": txn.status_code},
        )
        logger.info(
            "payments.txn.transition",
            extra={"txnid": txnid, "from": previous, "to": new_state},
        )
        return txn

    def record_gateway_data(self, txn: Transaction, gateway: dict[str, Any]) -> Transaction:
        """Store the latest gateway fields without changing state."""
        update_fields = self._apply_gateway(txn, gateway)
        if update_fields:
            txn.save(update_fields=[*update_fields, "updated_at"])
        return txn

    def schedule_replay(
        self, txnid: str, payload: dict[str, Any], *, attempts: int, next_at: datetime | None
    ) -> Transaction:
        txn = Transaction.objects.get(txnid=txnid)
        txn.replay_payload = payload
        txn.replay_attempts = attempts
        txn.next_replay_at = next_at
        txn.needs_manual_review = next_at is None
        txn.save(
            update_fields=[
                "replay_payload",
                "replay_attempts",
                "next_replay_at",
                "needs_manual_review",
                "updated_at",
            ]
        )
        return txn

    def clear_replay(self, txnid: str) -> None:
        Transaction.objects.filter(txnid=txnid).update(
            replay_payload=None, next_replay_at=None, needs_manual_review=False, updated_at=timezone.now()
        )

    def due_replays(self, now: datetime | None = None):
        now = now or timezone.now()
        return Transaction.objects.filter(
            replay_payload__isnull=False, next_replay_at__lte=now
        ).exclude(state__in=TERMINAL_STATES).order_by("next_replay_at")

    def stale_transactions(self, cutoff: datetime):
        return Transaction.objects.filter(
            state__in=[TxnState.INITIATED, TxnState.PENDING],
            created_at__lt=cutoff,
            replay_payload__isnull=True,
        ).order_by("created_at")

    def claim_idempotency_key(self, key: IdempotencyKey, *, txn: Transaction | None = None) -> Claim:
        return ledger.try_claim(key, txn=txn)

    def is_claimed(self, key: IdempotencyKey) -> bool:
        return ledger.is_claimed(key)

    @staticmethod
    def _apply_gateway(txn: Transaction, gateway: dict[str, Any] | None) -> list[str]:
        if not gateway:
            return []
        changed = []
        for name in GATEWAY_COLUMNS:
            if name in gateway:
                setattr(txn, name, gateway[name])
                changed.append(name)
        return changed
