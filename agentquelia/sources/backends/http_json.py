from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

import requests
from jsonpath_ng.jsonpath import JSONPath

from ...config import HttpSourceSpec
from ...errors import HttpSourceError, JsonSourceError
from ..base import Reading, utcnow
from ..jsonquery import compile_json_path, extract_number


@dataclass
class HttpJsonSource:
    """Fetches a JSON document over HTTP and extracts one number by JSONPath."""

    url: str
    json_path: str
    unit: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_secs: float = 10.0
    multiplier: float = 1.0
    session: requests.Session = field(default_factory=requests.Session, repr=False)
    source_id: str = field(init=False)
    _query: JSONPath = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.source_id = f"http:{self.url}"
        self._query = compile_json_path(self.json_path)

    @classmethod
    def from_spec(cls, spec: HttpSourceSpec, *, session: requests.Session | None = None) -> "HttpJsonSource":
        return cls(
            url=spec.url,
            json_path=spec.json_path,
            unit=spec.unit,
            method=spec.method,
            headers=dict(spec.headers),
            timeout_secs=spec.timeout_secs,
            multiplier=spec.multiplier,
            session=session or requests.Session(),
        )

    def read(self) -> Reading:
        try:
            resp = self.session.request(
                self.method,
                self.url,
                headers=dict(self.headers),
                timeout=self.timeout_secs,
            )
        except requests.RequestException as exc:
            raise HttpSourceError(f"{self.method} {self.url} failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            reason = getattr(resp, "reason", None) or "Unknown error"
            raise HttpSourceError(f"HTTP {resp.status_code} - {reason}", status=resp.status_code)

        try:
            document = resp.json()
        except ValueError as exc:
            raise JsonSourceError(f"response from {self.url} is not valid JSON: {exc}") from exc

        raw_value = extract_number(document, self._query, expression=self.json_path)
        return Reading(
            value=raw_value * self.multiplier,
            unit=self.unit,
            timestamp=utcnow(),
            source_id=self.source_id,
        )
