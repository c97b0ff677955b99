from __future__ import annotations

import requests

from ..config import CsvSourceSpec, HttpSourceSpec, JsonSourceSpec, SourceSpec
from ..errors import ConfigError
from .backends import CsvFileSource, HttpJsonSource, JsonFileSource
from .base import Reading, Source

__all__ = [
    "CsvFileSource",
    "HttpJsonSource",
    "JsonFileSource",
    "Reading",
    "Source",
    "build_source",
]


def build_source(spec: SourceSpec, *, session: requests.Session | None = None) -> Source:
    """Construct the source backend matching a validated spec."""

    if isinstance(spec, CsvSourceSpec):
        return CsvFileSource.from_spec(spec)
    if isinstance(spec, JsonSourceSpec):
        return JsonFileSource.from_spec(spec)
    if isinstance(spec, HttpSourceSpec):
        return HttpJsonSource.from_spec(spec, session=session)
    raise ConfigError(f"unsupported source spec: {type(spec).__name__}")
