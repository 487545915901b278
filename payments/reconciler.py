"""
Applies verified gateway messages to transactions.

For one message, everything below happens in a single database transaction:

    lock transaction -> claim ledger key -> transition -> side effect

An already closed transaction or a lost claim is a duplicate and nothing else
runs. If the side effect keeps failing the whole unit rolls back (the ledger
claim included) and the message is parked on the transaction for replay.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.db import OperationalError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.utils.module_loading import import_string

from core import metrics

from .alerts import AlertSink, raise_alert
from .config import RetryPolicy
from .enums import OUTCOME_STATE, Outcome, ReconcileStatus, TxnState
from .exceptions import SideEffectFailure
from .models import AuditLog, Transaction
from .repository import TransactionRepository
from .verifier import VerifiedMessage

logger = logging.getLogger(__name__)

SideEffect = Callable[..., Any]


@dataclass(frozen=True)
class ReconcileResult:
    status: ReconcileStatus
    txnid: str
    state: str
    side_effect_result: Any = None

    @property
    def ok(self) -> bool:
        return self.status != ReconcileStatus.SIDE_EFFECT_DEFERRED


def default_side_effect() -> SideEffect:
    return import_string(settings.PAYMENTS_SIDE_EFFECT)


class Reconciler:
    def __init__(
        self,
        repository: TransactionRepository | None = None,
        side_effect: SideEffect | None = None,
        retry_policy: RetryPolicy | None = None,
        *,
        side_effect_timeout: float | None = None,
        alert: AlertSink = raise_alert,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository or TransactionRepository()
        self.side_effect = side_effect or default_side_effect()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        if side_effect_timeout is None:
            side_effect_timeout = getattr(settings, "PAYMENTS_SIDE_EFFECT_TIMEOUT", None)
        self.side_effect_timeout = side_effect_timeout
        self.alert = alert
        self.sleep = sleep

    def reconcile(self, message: VerifiedMessage) -> ReconcileResult:
        key = message.idempotency_key
        try:
            with transaction.atomic():
                txn = self.repository.load_transaction(message.txnid, for_update=True)
                if txn is None:
                    raise Transaction.DoesNotExist(message.txnid)
                if txn.is_terminal:
                    return self._duplicate(message, txn, f"transaction already {txn.state}")
                claim = self.repository.claim_idempotency_key(key, txn=txn)
                if not claim.claimed:
                    return self._duplicate(message, txn, "already applied")
                return self._apply(txn, message)
        except SideEffectFailure as exc:
            return self._defer(message, exc)

    def _apply(self, txn: Transaction, message: VerifiedMessage) -> ReconcileResult:
        target = OUTCOME_STATE[message.outcome]
        gateway = message.gateway_columns()

        if target == TxnState.PENDING:
            if txn.state == TxnState.PENDING:
                self.repository.record_gateway_data(txn, gateway)
                logger.info("payments.reconcile.pending_again", extra={"txnid": txn.txnid})
                return ReconcileResult(ReconcileStatus.RECORDED, txn.txnid, txn.state)
            txn = self.repository.transition_transaction(txn.txnid, target, gateway=gateway)
            return ReconcileResult(ReconcileStatus.APPLIED, txn.txnid, txn.state)

        txn = self.repository.transition_transaction(txn.txnid, target, gateway=gateway)
        result = self._run_side_effect(txn, message.outcome)
        metrics.inc("payments.reconcile.applied", state=txn.state)
        logger.info(
            "payments.reconcile.applied",
            extra={"txnid": txn.txnid, "state": txn.state, "source": str(message.source)},
        )
        return ReconcileResult(ReconcileStatus.APPLIED, txn.txnid, txn.state, result)

    def _run_side_effect(self, txn: Transaction, outcome: Outcome) -> Any:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                with transaction.atomic(), metrics.timer("payments.side_effect", outcome=str(outcome)):
                    return self.side_effect(
                        txn.payment_record_id, outcome, timeout=self.side_effect_timeout
                    )
            except (SideEffectFailure, OperationalError) as exc:
                failure = exc
                if isinstance(exc, OperationalError):
                    failure = SideEffectFailure(
                        f"Database error in side effect: {exc}",
                        extra={"txnid": txn.txnid},
                    )
                logger.warning(
                    "payments.reconcile.side_effect_failed",
                    extra={"txnid": txn.txnid, "attempt": attempt, "code": failure.code},
                )
                if attempt == policy.max_attempts:
                    if failure is exc:
                        raise
                    raise failure from exc
                self.sleep(policy.delay_for(attempt))
        return None

    def _duplicate(self, message: VerifiedMessage, txn: Transaction, detail: str) -> ReconcileResult:
        metrics.inc("payments.reconcile.duplicate")
        logger.info(
            "payments.reconcile.duplicate",
            extra={
                "txnid": txn.txnid,
                "state": txn.state,
                "key": str(message.idempotency_key),
                "replay": message.replay,
            },
        )
        AuditLog.log(
            event="DUPLICATE_NOTIFICATION",
            transaction=txn,
            message=detail,
            meta={"key": str(message.idempotency_key), "source": str(message.source)},
        )
        return ReconcileResult(ReconcileStatus.DUPLICATE_NOTIFICATION, txn.txnid, txn.state)

    def _defer(self, message: VerifiedMessage, exc: SideEffectFailure) -> ReconcileResult:
        """Park the message after the rollback. Only a later replay can apply it."""
        policy = self.retry_policy
        txn = self.repository.load_transaction(message.txnid)
        now = timezone.now()
        previous = txn.replay_payload or {}
        attempts = txn.replay_attempts + 1 if previous else 1
        first_deferred = parse_datetime(previous.get("first_deferred_at") or "") or now
        next_at = now + policy.replay_delay_for(attempts)
        exhausted = (
            attempts > policy.replay_max_attempts
            or now - first_deferred >= policy.replay_window
        )
        payload = {**message.to_payload(), "first_deferred_at": first_deferred.isoformat()}
        txn = self.repository.schedule_replay(
            txn.txnid,
            payload,
            attempts=attempts,
            next_at=None if exhausted else next_at,
        )
        metrics.inc("payments.reconcile.deferred")
        AuditLog.log(
            event="SIDE_EFFECT_DEFERRED",
            transaction=txn,
            message=exc.message,
            meta={"attempts": attempts, "exhausted": exhausted},
        )
        if exhausted:
            self.alert(
                "manual_reconciliation_required",
                txnid=txn.txnid,
                detail=f"side effect failed after {attempts} deliveries: {exc.message}",
                transaction=txn,
                meta={"attempts": attempts},
            )
        else:
            logger.warning(
                "payments.reconcile.deferred",
                extra={"txnid": txn.txnid, "attempts": attempts, "next_replay_at": next_at.isoformat()},
            )
        return ReconcileResult(ReconcileStatus.SIDE_EFFECT_DEFERRED, txn.txnid, txn.state)
