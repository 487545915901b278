"""
Verification of PayU responses and webhooks.

Checks run in a fixed order and stop at the first failure:

1. structure (required fields present, amount parseable)
2. the transaction exists and is still open
3. the response hash
4. the amount against what we asked for
5. the status code against the fixed vocabulary

Rejections are values, not exceptions, and never change transaction state.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from core import metrics

from . import signing
from .alerts import AlertSink, raise_alert
from .config import GatewayConfig
from .enums import (
    SECURITY_REJECTIONS,
    MessageSource,
    Outcome,
    RejectionReason,
    map_gateway_status,
)
from .exceptions import InvalidFieldError
from .ledger import IdempotencyKey
from .models import AuditLog, Transaction
from .repository import TransactionRepository

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("txnid", "status", "amount", "mihpayid", "hash")
# Verify API answers come back over our own authenticated request and carry no hash.
UNSIGNED_REQUIRED_FIELDS = ("txnid", "status", "amount", "mihpayid")

# Fields we keep from a gateway message; anything else PayU adds is dropped.
KNOWN_FIELDS = (
    *signing.REQUEST_FIELDS,
    "mihpayid",
    "status",
    "hash",
    "error",
    "error_Message",
    "phone",
    "mode",
    "bank_ref_num",
    "PG_TYPE",
    "net_amount_debit",
    "addedon",
)


@dataclass(frozen=True)
class GatewayMessage:
    fields: dict[str, str]
    source: str = MessageSource.WEBHOOK

    @classmethod
    def from_payload(cls, payload: Mapping, source: str = MessageSource.WEBHOOK) -> "GatewayMessage":
        """Build from a form body (QueryDict or plain dict); the last value of a key wins."""
        fields = {}
        for name in KNOWN_FIELDS:
            value = payload.get(name)
            if value is not None:
                fields[name] = str(value)
        return cls(fields=fields, source=source)

    def get(self, name: str) -> str:
        return self.fields.get(name, "")

    @property
    def signed(self) -> bool:
        return self.source != MessageSource.VERIFY_API


@dataclass(frozen=True)
class VerifiedMessage:
    txnid: str
    gateway_txn_id: str
    status_code: str
    outcome: Outcome
    amount: str
    error_code: str = ""
    error_message: str = ""
    source: str = MessageSource.WEBHOOK
    replay: bool = False
    fields: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def idempotency_key(self) -> IdempotencyKey:
        return IdempotencyKey(self.txnid, self.gateway_txn_id, self.status_code)

    def gateway_columns(self) -> dict[str, Any]:
        raw = {k: v for k, v in self.fields.items() if k != "hash"}
        return {
            "gateway_txn_id": self.gateway_txn_id,
            "status_code": self.status_code,
            "error_code": self.error_code[:64],
            "error_message": self.error_message[:255],
            "raw_response": raw,
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "txnid": self.txnid,
            "gateway_txn_id": self.gateway_txn_id,
            "status_code": self.status_code,
            "outcome": str(self.outcome),
            "amount": self.amount,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "source": str(self.source),
            "fields": {k: v for k, v in self.fields.items() if k != "hash"},
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "VerifiedMessage":
        """Rebuild a message stored for deferred replay. Already verified, so no checks."""
        return cls(
            txnid=payload["txnid"],
            gateway_txn_id=payload["gateway_txn_id"],
            status_code=payload["status_code"],
            outcome=Outcome(payload["outcome"]),
            amount=payload["amount"],
            error_code=payload.get("error_code", ""),
            error_message=payload.get("error_message", ""),
            source=payload.get("source", MessageSource.WEBHOOK),
            fields=dict(payload.get("fields") or {}),
        )


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    txnid: str = ""
    detail: str = ""

    @property
    def security_relevant(self) -> bool:
        return self.reason in SECURITY_REJECTIONS


class ResponseVerifier:
    def __init__(
        self,
        config: GatewayConfig,
        repository: TransactionRepository | None = None,
        alert: AlertSink = raise_alert,
    ):
        self.config = config
        self.repository = repository or TransactionRepository()
        self.alert = alert

    def verify(self, message: GatewayMessage) -> VerifiedMessage | Rejection:
        txnid = message.get("txnid").strip()

        required = REQUIRED_FIELDS if message.signed else UNSIGNED_REQUIRED_FIELDS
        missing = [name for name in required if not message.get(name).strip()]
        if missing:
            return self._reject(
                message, RejectionReason.MALFORMED_MESSAGE, txnid,
                f"missing fields: {', '.join(missing)}",
            )
        try:
            amount = signing.canonical_amount(message.get("amount"))
        except InvalidFieldError as exc:
            return self._reject(message, RejectionReason.MALFORMED_MESSAGE, txnid, exc.message)

        status_code = message.get("status").strip()
        gateway_txn_id = message.get("mihpayid").strip()
        key = IdempotencyKey(txnid, gateway_txn_id, status_code)

        txn = self.repository.load_transaction(txnid)
        if txn is None:
            return self._reject(message, RejectionReason.UNKNOWN_OR_CLOSED_TRANSACTION, txnid, "unknown txnid")
        # A closed transaction only hears again about the exact notification that
        # closed it; that redelivery is passed on and reported as a duplicate.
        replay = False
        if txn.is_terminal:
            if not self.repository.is_claimed(key):
                return self._reject(
                    message, RejectionReason.UNKNOWN_OR_CLOSED_TRANSACTION, txnid,
                    f"transaction already {txn.state}", txn=txn,
                )
            replay = True

        signed = {**message.fields, "key": self.config.merchant_key}
        if message.signed and not signing.verify_response(
            signed, self.config.merchant_salt, message.get("hash")
        ):
            return self._reject(message, RejectionReason.SIGNATURE_MISMATCH, txnid, "hash mismatch", txn=txn)

        expected = signing.canonical_amount(txn.amount)
        if amount != expected:
            return self._reject(
                message, RejectionReason.AMOUNT_MISMATCH, txnid,
                f"expected {expected}, got {amount}", txn=txn,
            )

        outcome = map_gateway_status(status_code)
        if outcome == Outcome.UNKNOWN:
            return self._reject(
                message, RejectionReason.UNKNOWN_STATUS, txnid,
                f"unmapped status {status_code[:32]!r}", txn=txn,
            )

        metrics.inc("payments.verifier.accepted", source=str(message.source))
        return VerifiedMessage(
            txnid=txnid,
            gateway_txn_id=gateway_txn_id,
            status_code=status_code,
            outcome=outcome,
            amount=amount,
            error_code=message.get("error"),
            error_message=message.get("error_Message"),
            source=message.source,
            replay=replay,
            fields=dict(message.fields),
        )

    def _reject(
        self,
        message: GatewayMessage,
        reason: RejectionReason,
        txnid: str,
        detail: str,
        *,
        txn: Transaction | None = None,
    ) -> Rejection:
        rejection = Rejection(reason=reason, txnid=txnid, detail=detail)
        extra = {"txnid": txnid, "reason": str(reason), "source": str(message.source)}
        metrics.inc("payments.verifier.rejected", reason=str(reason))

        if rejection.security_relevant:
            logger.warning("payments.verifier.rejected", extra=extra)
            self.alert(
                reason,
                txnid=txnid,
                detail=detail,
                transaction=txn,
                meta={"source": str(message.source)},
            )
        elif reason == RejectionReason.MALFORMED_MESSAGE:
            logger.warning("payments.verifier.rejected", extra=extra)
        else:
            logger.info("payments.verifier.rejected", extra=extra)

        AuditLog.log(
            event="WEBHOOK_REJECTED",
            transaction=txn,
            txnid=txnid[:64],
            message=detail,
            meta={"reason": str(reason), "source": str(message.source)},
        )
        return rejection
