from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from ..config import SupabaseSettings
from ..errors import (
    AuthFailedError,
    InvalidResponseError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TransportTimeoutError,
)

logger = logging.getLogger("agentquelia.transport")

DEFAULT_RATE_LIMIT_WAIT_S = 60.0


def parse_retry_after_seconds(headers: Mapping[str, Any]) -> float | None:
    """Parse Retry-After (seconds only). Returns None if unparseable."""

    ra = headers.get("Retry-After")
    if not ra:
        return None
    try:
        value = float(str(ra).strip())
    except ValueError:
        return None
    return value if value >= 0 else None


def raise_for_delivery_status(resp: requests.Response) -> None:
    """Map a non-2xx ingestion response onto the transport error taxonomy."""

    status = resp.status_code
    if 200 <= status < 300:
        return

    body = resp.text or ""
    if status in (401, 403):
        raise AuthFailedError(body or f"HTTP {status}")
    if status == 429:
        retry_after = parse_retry_after_seconds(resp.headers or {})
        raise RateLimitedError(DEFAULT_RATE_LIMIT_WAIT_S if retry_after is None else retry_after)
    if 500 <= status < 600:
        raise ServerError(status, body)
    raise InvalidResponseError(f"HTTP {status}: {body[:200]}")


class SupabaseClient:
    """Delivers one reading per call to the Supabase ingestion RPC.

    Exactly one HTTP round-trip per deliver(); retries belong to RetryPolicy.
    """

    def __init__(self, settings: SupabaseSettings, *, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.endpoint = f"{settings.url.rstrip('/')}/{settings.rpc_endpoint.lstrip('/')}"
        self._session = session or requests.Session()

    def deliver(self, credential: str, value: float, unit: str) -> None:
        payload = {
            "p_api_key": credential,
            "p_value": value,
            "p_unit": unit,
        }
        try:
            resp = self._session.post(
                self.endpoint,
                headers={
                    "apikey": self.settings.anon_key,
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self.settings.timeout_secs,
            )
        except requests.Timeout as exc:
            raise TransportTimeoutError(f"request timeout after {self.settings.timeout_secs:g}s") from exc
        except requests.ConnectionError as exc:
            raise NetworkError(f"connection failed: {exc}") from exc
        except requests.RequestException as exc:
            raise NetworkError(str(exc)) from exc

        logger.debug("ingestion responded status=%s", resp.status_code)
        raise_for_delivery_status(resp)
