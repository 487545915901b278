from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction

from .models import IdempotencyRecord, Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotencyKey:
    txnid: str
    gateway_txn_id: str
    status_code: str

    def __str__(self) -> str:
        return f"{self.txnid}:{self.gateway_txn_id}:{self.status_code}"

    def as_filter(self) -> dict[str, str]:
        return {
            "txnid": self.txnid,
            "gateway_txn_id": self.gateway_txn_id,
            "status_code": self.status_code,
        }


@dataclass(frozen=True)
class Claim:
    claimed: bool
    record: IdempotencyRecord | None = None


def try_claim(key: IdempotencyKey, *, txn: Transaction | None = None) -> Claim:
    """Insert the ledger row for `key`; whoever inserts first owns the notification.

    Runs in a savepoint so a lost race leaves the caller's transaction usable.
    The claim only becomes durable when the caller's outer transaction commits,
    which is what lets a failed side effect roll it back.
    """
    try:
        with transaction.atomic():
            record = IdempotencyRecord.objects.create(transaction=txn, **key.as_filter())
    except IntegrityError:
        logger.info("payments.ledger.claim_lost", extra={"key": str(key)})
        return Claim(claimed=False)
    logger.debug("payments.ledger.claimed", extra={"key": str(key)})
    return Claim(claimed=True, record=record)


def is_claimed(key: IdempotencyKey) -> bool:
    return IdempotencyRecord.objects.filter(**key.as_filter()).exists()
