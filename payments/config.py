from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


@dataclass(frozen=True)
class GatewayConfig:
    """Merchant credentials and limits for one PayU account.

    Components receive this explicitly; only `from_settings` looks at Django
    settings, so tests and the audit harness can run against throwaway keys.
    """

    merchant_key: str
    merchant_salt: str = field(repr=False)
    base_url: str = "https://test.payu.in/_payment"
    verify_url: str = "https://test.payu.in/merchant/postservice.php?form=2"
    environment: str = "test"
    min_amount: Decimal = Decimal("1.00")
    max_amount: Decimal = Decimal("100000.00")
    side_effect_timeout: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_settings(cls) -> "GatewayConfig":
        key = getattr(settings, "PAYU_MERCHANT_KEY", "")
        salt = getattr(settings, "PAYU_MERCHANT_SALT", "")
        if not key or not salt:
            raise ImproperlyConfigured("PAYU_MERCHANT_KEY and PAYU_MERCHANT_SALT must be set.")
        return cls(
            merchant_key=key,
            merchant_salt=salt,
            base_url=settings.PAYU_BASE_URL,
            verify_url=settings.PAYU_VERIFY_URL,
            environment=getattr(settings, "PAYU_ENVIRONMENT", "test"),
            min_amount=Decimal(str(getattr(settings, "PAYMENTS_MIN_AMOUNT", "1.00"))),
            max_amount=Decimal(str(getattr(settings, "PAYMENTS_MAX_AMOUNT", "100000.00"))),
            side_effect_timeout=float(getattr(settings, "PAYMENTS_SIDE_EFFECT_TIMEOUT", 10.0)),
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries for the side effect.

    `max_attempts` in-request tries with exponential backoff, then up to
    `replay_max_attempts` deferred replays spread over `replay_window`. After
    that the transaction needs manual reconciliation.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1
    replay_base_delay: timedelta = timedelta(minutes=1)
    replay_max_delay: timedelta = timedelta(hours=1)
    replay_max_attempts: int = 8
    replay_window: timedelta = timedelta(hours=24)

    def delay_for(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number `attempt` (1-based)."""
        if self.base_delay <= 0:
            return 0.0
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + delay * self.jitter * random.random()

    def replay_delay_for(self, replay: int) -> timedelta:
        delay = self.replay_base_delay * (2 ** max(replay - 1, 0))
        return min(delay, self.replay_max_delay)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=int(getattr(settings, "PAYMENTS_SIDE_EFFECT_ATTEMPTS", 3)),
            base_delay=float(getattr(settings, "PAYMENTS_SIDE_EFFECT_BACKOFF", 0.5)),
            max_delay=float(getattr(settings, "PAYMENTS_SIDE_EFFECT_MAX_DELAY", 5.0)),
            replay_max_attempts=int(getattr(settings, "PAYMENTS_REPLAY_MAX_ATTEMPTS", 8)),
            replay_window=timedelta(hours=int(getattr(settings, "PAYMENTS_REPLAY_WINDOW_HOURS", 24))),
        )
