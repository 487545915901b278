from __future__ import annotations

from typing import Any


class PaymentsError(Exception):
    """Base exception for the payments pipeline."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra = extra or {}


class InvalidFieldError(PaymentsError, ValueError):
    """A field cannot be placed in a signed string."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__("invalid_field", message, extra={"field": field})
        self.field = field


class InvalidTransition(PaymentsError):
    def __init__(self, txnid: str, current: str, target: str) -> None:
        super().__init__(
            "invalid_transition",
            f"Transaction {txnid} cannot move from {current} to {target}.",
            extra={"txnid": txnid, "from": current, "to": target},
        )


class SideEffectFailure(PaymentsError):
    """Transient failure of the subscription/token collaborator; safe to retry."""

    def __init__(self, message: str, *, extra: dict[str, Any] | None = None) -> None:
        super().__init__("side_effect_failed", message, extra=extra)


class GatewayError(PaymentsError):
    """The PayU verify API could not be reached or answered nonsense."""
