from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from ..config import RetrySettings
from ..errors import TransportError

logger = logging.getLogger("agentquelia.retry")

T = TypeVar("T")


@dataclass
class Backoff:
    """Geometric delay sequence capped at max_s. No jitter."""

    initial_s: float
    max_s: float
    multiplier: float
    current_s: float = field(init=False)

    def __post_init__(self) -> None:
        if self.multiplier <= 1.0:
            raise ValueError("backoff multiplier must be > 1.0")
        self.current_s = min(self.initial_s, self.max_s)

    def next_delay(self) -> float:
        delay = self.current_s
        self.current_s = min(self.current_s * self.multiplier, self.max_s)
        return delay


@dataclass
class RetryPolicy:
    max_attempts: int
    initial_delay_s: float
    max_delay_s: float
    multiplier: float
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay_s=settings.initial_delay_ms / 1000.0,
            max_delay_s=settings.max_delay_ms / 1000.0,
            multiplier=settings.multiplier,
            sleep=sleep,
        )

    def call(self, operation: Callable[[], T]) -> T:
        """Run operation, retrying retriable TransportErrors with backoff.

        The last error is re-raised once attempts are exhausted or the error
        is terminal. Backoff state is local to this call.
        """

        backoff = Backoff(
            initial_s=self.initial_delay_s,
            max_s=self.max_delay_s,
            multiplier=self.multiplier,
        )
        attempt = 1
        while True:
            try:
                return operation()
            except TransportError as exc:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Max retry attempts reached (attempt=%s/%s): %s",
                        attempt,
                        self.max_attempts,
                        exc,
                        extra={"fields": {"attempt": attempt, "max_attempts": self.max_attempts, "error": str(exc)}},
                    )
                    raise
                if not exc.retriable:
                    logger.warning(
                        "Non-retriable error encountered: %s",
                        exc,
                        extra={"fields": {"attempt": attempt, "error": str(exc)}},
                    )
                    raise

                wait_s = backoff.next_delay()
                logger.info(
                    "Retrying after error (attempt=%s/%s wait_ms=%d): %s",
                    attempt,
                    self.max_attempts,
                    wait_s * 1000,
                    exc,
                    extra={
                        "fields": {
                            "attempt": attempt,
                            "max_attempts": self.max_attempts,
                            "wait_ms": int(wait_s * 1000),
                            "error": str(exc),
                        }
                    },
                )
                self.sleep(wait_s)
                attempt += 1
