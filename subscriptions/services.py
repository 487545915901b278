from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from django.db import OperationalError, transaction
from django.db.models import F
from django.utils import timezone

from payments.enums import Outcome
from payments.exceptions import SideEffectFailure

from .models import PaymentRecord, Subscription, TokenAllocation, TokenBalance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    payment_record_id: int
    status: str
    tokens_granted: int = 0
    changed: bool = False


def apply_side_effect(payment_record_id: int, outcome, *, timeout: float | None = None) -> SideEffectResult:
    """Settle a payment record once its transaction is final.

    Safe to call repeatedly for the same record: tokens are granted at most once
    (one TokenAllocation per record) and a paid record is never downgraded.
    Raises SideEffectFailure when the record is missing, the database errors out
    (lock timeout, deadlock) or the work overruns
    `timeout` seconds; nothing is committed in that case.
    """
    outcome = Outcome(outcome)
    started = time.monotonic()
    try:
        with transaction.atomic():
            record = (
                PaymentRecord.objects.select_for_update()
                .select_related("subscription", "subscription__plan")
                .filter(pk=payment_record_id)
                .first()
            )
            if record is None:
                raise SideEffectFailure(
                    f"Payment record {payment_record_id} not found.",
                    extra={"payment_record_id": payment_record_id},
                )

            if outcome == Outcome.SUCCESS:
                result = _grant(record)
            elif outcome in (Outcome.FAILURE, Outcome.CANCELLED):
                result = _settle_unpaid(record, outcome)
            else:
                result = SideEffectResult(record.pk, record.status)

            if timeout is not None and time.monotonic() - started > timeout:
                raise SideEffectFailure(
                    f"Side effect for payment record {payment_record_id} exceeded {timeout}s.",
                    extra={"payment_record_id": payment_record_id},
                )
    except OperationalError as exc:
        # lock timeouts, deadlocks, dropped connections
        raise SideEffectFailure(
            f"Database error settling payment record {payment_record_id}: {exc}",
            extra={"payment_record_id": payment_record_id},
        ) from exc

    logger.info(
        "subscriptions.side_effect",
        extra={
            "payment_record_id": record.pk,
            "outcome": str(outcome),
            "status": result.status,
            "changed": result.changed,
            "tokens": result.tokens_granted,
        },
    )
    return result


def _grant(record: PaymentRecord) -> SideEffectResult:
    subscription = record.subscription
    tokens = record.token_quantity
    if not tokens and subscription is not None:
        tokens = subscription.plan.token_allowance

    allocation, created = TokenAllocation.objects.get_or_create(
        payment_record=record, defaults={"user_id": record.user_id, "tokens": tokens}
    )
    if not created:
        return SideEffectResult(record.pk, record.status)

    now = timezone.now()
    record.status = PaymentRecord.Status.PAID
    record.paid_at = now
    record.save(update_fields=["status", "paid_at", "updated_at"])

    if allocation.tokens:
        balance, _ = TokenBalance.objects.get_or_create(user_id=record.user_id)
        TokenBalance.objects.filter(pk=balance.pk).update(tokens=F("tokens") + allocation.tokens)

    if subscription is not None:
        start = max(now, subscription.current_period_end or now)
        subscription.status = Subscription.Status.ACTIVE
        subscription.current_period_end = start + timedelta(days=subscription.plan.period_days)
        subscription.save(update_fields=["status", "current_period_end", "updated_at"])

    return SideEffectResult(record.pk, record.status, tokens_granted=allocation.tokens, changed=True)


def _settle_unpaid(record: PaymentRecord, outcome: Outcome) -> SideEffectResult:
    if record.status == PaymentRecord.Status.PAID:
        logger.warning(
            "subscriptions.side_effect.paid_record_not_downgraded",
            extra={"payment_record_id": record.pk, "outcome": str(outcome)},
        )
        return SideEffectResult(record.pk, record.status)

    status = (
        PaymentRecord.Status.CANCELLED if outcome == Outcome.CANCELLED else PaymentRecord.Status.FAILED
    )
    changed = record.status != status
    if changed:
        record.status = status
        record.save(update_fields=["status", "updated_at"])

    subscription = record.subscription
    # A renewal that fails leaves the paid-up period alone.
    covered = (
        subscription is not None
        and subscription.status == Subscription.Status.ACTIVE
        and subscription.current_period_end is not None
        and subscription.current_period_end > timezone.now()
    )
    if subscription is not None and not covered and subscription.status != Subscription.Status.UNPAID:
        subscription.status = Subscription.Status.UNPAID
        subscription.save(update_fields=["status", "updated_at"])
        changed = True

    return SideEffectResult(record.pk, record.status, changed=changed)
