"""In-process counters and timings, emitted as records on the ``metrics`` logger.

Counters live for the life of the worker; ship the log records somewhere if
you need history.
"""

from __future__ import annotations

import logging
import time

logger = logging.getLogger("metrics")

_COUNTERS: dict[str, int] = {}


def inc(name: str, amount: int = 1, **labels) -> None:
    key = _key(name, labels)
    _COUNTERS[key] = _COUNTERS.get(key, 0) + int(amount)
    logger.info(
        "metric.counter", extra={"metric": name, "value": _COUNTERS[key], "labels": labels}
    )


def counter(name: str, **labels) -> int:
    return _COUNTERS.get(_key(name, labels), 0)


def reset() -> None:
    _COUNTERS.clear()


class timer:
    """Log how long the block took; a block that raises is labelled with the error type."""

    def __init__(self, name: str, **labels) -> None:
        self.name = name
        self.labels = dict(labels)
        self.seconds: float | None = None
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.seconds = time.perf_counter() - self._started
        if exc_type is not None:
            self.labels["error"] = exc_type.__name__
        logger.info(
            "metric.timer",
            extra={"metric": self.name, "value": self.seconds, "labels": self.labels},
        )
        return False


def _key(name: str, labels: dict[str, object]) -> str:
    return ":".join([name, *(f"{k}={labels[k]}" for k in sorted(labels))])
