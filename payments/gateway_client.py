from __future__ import annotations

import logging

import requests

from . import signing
from .config import GatewayConfig
from .enums import MessageSource
from .exceptions import GatewayError
from .verifier import GatewayMessage

logger = logging.getLogger(__name__)

VERIFY_COMMAND = "verify_payment"
NOT_FOUND = "not found"


def verify_payment(config: GatewayConfig, txnid: str, *, timeout: float = 20) -> GatewayMessage | None:
    """Ask PayU what it knows about `txnid`.

    Returns None when PayU has no record of the transaction (the payer never
    reached the gateway). Raises GatewayError on transport or format problems.
    """
    data = {
        "key": config.merchant_key,
        "command": VERIFY_COMMAND,
        "var1": txnid,
        "hash": signing.sign_command(config.merchant_key, VERIFY_COMMAND, txnid, config.merchant_salt),
    }
    try:
        response = requests.post(config.verify_url, data=data, timeout=timeout)
    except requests.RequestException as exc:
        raise GatewayError(
            "payu_network_error",
            f"Verification request failed: {exc}",
            extra={"txnid": txnid},
        ) from exc

    if response.status_code >= 500:
        raise GatewayError(
            "payu_unavailable",
            f"PayU responded with status {response.status_code}.",
            extra={"txnid": txnid},
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise GatewayError(
            "payu_invalid_json", "PayU returned invalid JSON.", extra={"txnid": txnid}
        ) from exc

    details = (payload.get("transaction_details") or {}).get(txnid) or {}
    status = str(details.get("status") or "").strip()
    if not details or status.lower() == NOT_FOUND:
        logger.info("payments.gateway.verify_not_found", extra={"txnid": txnid})
        return None

    fields = {
        "txnid": details.get("txnid") or txnid,
        "mihpayid": details.get("mihpayid"),
        "status": status,
        "amount": details.get("amt") or details.get("transaction_amount"),
        "productinfo": details.get("productinfo"),
        "firstname": details.get("firstname"),
        "email": details.get("email"),
        "udf1": details.get("udf1"),
        "udf2": details.get("udf2"),
        "udf3": details.get("udf3"),
        "udf4": details.get("udf4"),
        "udf5": details.get("udf5"),
        "error": details.get("error_code"),
        "error_Message": details.get("error_Message"),
        "mode": details.get("mode"),
        "bank_ref_num": details.get("bank_ref_num"),
    }
    return GatewayMessage.from_payload(fields, source=MessageSource.VERIFY_API)
