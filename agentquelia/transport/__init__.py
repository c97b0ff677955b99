from .client import SupabaseClient, parse_retry_after_seconds, raise_for_delivery_status
from .outcome import DeliveryOutcome
from .retry import Backoff, RetryPolicy

__all__ = [
    "Backoff",
    "DeliveryOutcome",
    "RetryPolicy",
    "SupabaseClient",
    "parse_retry_after_seconds",
    "raise_for_delivery_status",
]
