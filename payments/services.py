from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .config import GatewayConfig
from .enums import MessageSource
from .reconciler import Reconciler, ReconcileResult
from .repository import TransactionRepository
from .verifier import GatewayMessage, Rejection, ResponseVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedMessage:
    rejection: Rejection | None = None
    result: ReconcileResult | None = None


def process_gateway_message(
    payload: Mapping,
    *,
    source: str = MessageSource.WEBHOOK,
    config: GatewayConfig | None = None,
    verifier: ResponseVerifier | None = None,
    reconciler: Reconciler | None = None,
) -> ProcessedMessage:
    """Verify one inbound PayU message and, if it passes, reconcile it."""
    repository = TransactionRepository()
    if verifier is None:
        verifier = ResponseVerifier(config or GatewayConfig.from_settings(), repository)
    message = GatewayMessage.from_payload(payload, source=source)
    verified = verifier.verify(message)
    if isinstance(verified, Rejection):
        logger.info(
            "payments.message.rejected",
            extra={"txnid": verified.txnid, "reason": str(verified.reason), "source": str(source)},
        )
        return ProcessedMessage(rejection=verified)
    reconciler = reconciler or Reconciler(repository)
    result = reconciler.reconcile(verified)
    logger.info(
        "payments.message.processed",
        extra={"txnid": result.txnid, "status": str(result.status), "source": str(source)},
    )
    return ProcessedMessage(result=result)
