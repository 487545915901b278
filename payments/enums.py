from django.db import models


class TxnState(models.TextChoices):
    INITIATED = "initiated", "Initiated"
    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILURE = "failure", "Failure"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_STATES = frozenset({TxnState.SUCCESS, TxnState.FAILURE, TxnState.CANCELLED})

ALLOWED_TRANSITIONS = {
    TxnState.INITIATED: frozenset(
        {TxnState.PENDING, TxnState.SUCCESS, TxnState.FAILURE, TxnState.CANCELLED}
    ),
    TxnState.PENDING: frozenset({TxnState.SUCCESS, TxnState.FAILURE, TxnState.CANCELLED}),
    TxnState.SUCCESS: frozenset(),
    TxnState.FAILURE: frozenset(),
    TxnState.CANCELLED: frozenset(),
}


class Outcome(models.TextChoices):
    """Internal outcome of a gateway status code."""

    SUCCESS = "success", "Success"
    FAILURE = "failure", "Failure"
    PENDING = "pending", "Pending"
    CANCELLED = "cancelled", "Cancelled"
    UNKNOWN = "unknown", "Unknown"


# PayU vocabulary. Extend only by adding rows here.
GATEWAY_STATUS_MAP = {
    "success": Outcome.SUCCESS,
    "failure": Outcome.FAILURE,
    "pending": Outcome.PENDING,
    "cancel": Outcome.CANCELLED,
}

OUTCOME_STATE = {
    Outcome.SUCCESS: TxnState.SUCCESS,
    Outcome.FAILURE: TxnState.FAILURE,
    Outcome.PENDING: TxnState.PENDING,
    Outcome.CANCELLED: TxnState.CANCELLED,
}


def map_gateway_status(code) -> Outcome:
    return GATEWAY_STATUS_MAP.get(str(code or "").strip(), Outcome.UNKNOWN)


class MessageSource(models.TextChoices):
    REDIRECT = "redirect", "Browser redirect"
    WEBHOOK = "webhook", "Webhook"
    VERIFY_API = "verify_api", "Verify API"


class RejectionReason(models.TextChoices):
    MALFORMED_MESSAGE = "malformed_message", "Malformed message"
    UNKNOWN_OR_CLOSED_TRANSACTION = (
        "unknown_or_closed_transaction",
        "Unknown or closed transaction",
    )
    SIGNATURE_MISMATCH = "signature_mismatch", "Signature mismatch"
    AMOUNT_MISMATCH = "amount_mismatch", "Amount mismatch"
    UNKNOWN_STATUS = "unknown_status", "Unknown status"


SECURITY_REJECTIONS = frozenset(
    {RejectionReason.SIGNATURE_MISMATCH, RejectionReason.AMOUNT_MISMATCH}
)


class ReconcileStatus(models.TextChoices):
    APPLIED = "applied", "Applied"
    RECORDED = "recorded", "Recorded without transition"
    DUPLICATE_NOTIFICATION = "duplicate_notification", "Duplicate notification"
    SIDE_EFFECT_DEFERRED = "side_effect_deferred", "Side effect deferred"
