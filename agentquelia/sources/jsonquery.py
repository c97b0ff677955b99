from __future__ import annotations

from typing import Any

from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse as parse_jsonpath
from jsonpath_ng.jsonpath import JSONPath

from ..errors import ConfigError, InvalidValueTypeError, JsonSourceError, ValueNotFoundError


def compile_json_path(expression: str) -> JSONPath:
    """Compile a JSONPath expression once, at source construction."""

    try:
        return parse_jsonpath(expression)
    except Exception as exc:
        raise ConfigError(f"invalid JSONPath '{expression}': {exc}") from exc


def extract_number(document: Any, query: JSONPath, *, expression: str) -> float:
    """Evaluate query against document and coerce the first match to float.

    Numbers are used as-is; strings are trimmed and parsed. Any other JSON
    type is rejected.
    """

    try:
        matches = query.find(document)
    except JSONPathError as exc:
        raise JsonSourceError(f"failed to evaluate JSONPath '{expression}': {exc}") from exc

    if not matches:
        raise ValueNotFoundError(f"no value found at path: {expression}")

    return coerce_number(matches[0].value)


def coerce_number(value: Any) -> float:
    # bool is an int subclass; JSON true/false is not a number.
    if isinstance(value, bool):
        raise InvalidValueTypeError(f"expected number, got boolean {str(value).lower()}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise InvalidValueTypeError(f"string '{value}' is not a valid number") from None
    kind = "null" if value is None else type(value).__name__
    raise InvalidValueTypeError(f"expected number, got {kind}")
