"""
Operator alerts for security-relevant rejections and stuck payments.

Alerts are ERROR records on the ``payments.security`` logger, which settings
route to the console and to ``ADMINS`` by e-mail, plus an AuditLog row so the
trail survives log rotation.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from core import metrics

from .models import AuditLog, Transaction

security_logger = logging.getLogger("payments.security")


class AlertSink(Protocol):
    def __call__(
        self,
        reason: str,
        *,
        txnid: str = "",
        detail: str = "",
        transaction: Transaction | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None: ...


def raise_alert(
    reason: str,
    *,
    txnid: str = "",
    detail: str = "",
    transaction: Transaction | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    reason = str(reason)
    metrics.inc("payments.security.alert", reason=reason)
    security_logger.error(
        "payments.security.%s txnid=%s %s",
        reason,
        txnid or "-",
        detail,
        extra={"reason": reason, "txnid": txnid, **(meta or {})},
    )
    AuditLog.log(
        event="SECURITY_ALERT",
        transaction=transaction,
        txnid=txnid,
        message=detail,
        meta={"reason": reason, **(meta or {})},
    )
