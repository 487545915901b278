import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from . import gateway_client
from .config import GatewayConfig
from .enums import ReconcileStatus
from .exceptions import GatewayError
from .models import AuditLog
from .reconciler import Reconciler
from .repository import TransactionRepository
from .verifier import Rejection, ResponseVerifier, VerifiedMessage

logger = logging.getLogger(__name__)


@shared_task
def replay_deferred_notifications(limit=100):
    """Re-run reconciliation for messages whose side effect was deferred."""
    repository = TransactionRepository()
    reconciler = Reconciler(repository)
    summary = {"replayed": 0, "deferred": 0}
    for txn in list(repository.due_replays()[:limit]):
        message = VerifiedMessage.from_payload(txn.replay_payload)
        result = reconciler.reconcile(message)
        if result.status == ReconcileStatus.SIDE_EFFECT_DEFERRED:
            summary["deferred"] += 1
            continue
        repository.clear_replay(txn.txnid)
        summary["replayed"] += 1
    logger.info("payments.tasks.replay_done", extra=summary)
    return summary


@shared_task
def reconcile_stale_transactions(max_age_mins=None, limit=200, dry_run=False):
    """Ask PayU about transactions that never heard back and apply what it says."""
    max_age = max_age_mins or settings.PAYMENTS_STALE_AFTER_MINUTES
    cutoff = timezone.now() - timedelta(minutes=max_age)
    config = GatewayConfig.from_settings()
    repository = TransactionRepository()
    verifier = ResponseVerifier(config, repository)
    reconciler = Reconciler(repository)

    summary = {"checked": 0, "reconciled": 0, "not_found": 0, "rejected": 0, "errors": 0}
    for txn in list(repository.stale_transactions(cutoff)[:limit]):
        summary["checked"] += 1
        try:
            message = gateway_client.verify_payment(config, txn.txnid)
        except GatewayError as exc:
            summary["errors"] += 1
            logger.warning(
                "payments.tasks.verify_failed",
                extra={"txnid": txn.txnid, "code": exc.code},
            )
            continue
        if message is None:
            summary["not_found"] += 1
            continue
        if dry_run:
            logger.info(
                "payments.tasks.stale_dry_run",
                extra={"txnid": txn.txnid, "gateway_status": message.get("status")},
            )
            continue

        verified = verifier.verify(message)
        if isinstance(verified, Rejection):
            summary["rejected"] += 1
            continue
        result = reconciler.reconcile(verified)
        if result.status == ReconcileStatus.APPLIED:
            summary["reconciled"] += 1
            AuditLog.log(event="RECONCILED", txnid=txn.txnid, meta={"state": result.state})

    logger.info("payments.tasks.stale_done", extra=summary)
    return summary
