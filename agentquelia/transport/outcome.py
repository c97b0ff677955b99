from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ..errors import TransportError

OutcomeStatus = Literal["success", "retriable_failure", "terminal_failure"]


@dataclass(frozen=True)
class DeliveryOutcome:
    status: OutcomeStatus
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls) -> "DeliveryOutcome":
        return cls(status="success")

    @classmethod
    def from_error(cls, exc: TransportError) -> "DeliveryOutcome":
        status: OutcomeStatus = "retriable_failure" if exc.retriable else "terminal_failure"
        return cls(status=status, reason=f"{type(exc).__name__}: {exc}")
