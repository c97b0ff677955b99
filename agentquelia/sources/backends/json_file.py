from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from jsonpath_ng.jsonpath import JSONPath

from ...config import JsonSourceSpec
from ...errors import JsonSourceError
from ..base import Reading, read_text_file, utcnow
from ..jsonquery import compile_json_path, extract_number


@dataclass
class JsonFileSource:
    """Reads a JSON document from disk and extracts one number by JSONPath."""

    path: Path
    json_path: str
    unit: str
    multiplier: float = 1.0
    source_id: str = field(init=False)
    _query: JSONPath = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.source_id = f"json:{self.path}"
        self._query = compile_json_path(self.json_path)

    @classmethod
    def from_spec(cls, spec: JsonSourceSpec) -> "JsonFileSource":
        return cls(
            path=spec.path,
            json_path=spec.json_path,
            unit=spec.unit,
            multiplier=spec.multiplier,
        )

    def read(self) -> Reading:
        content = read_text_file(self.path)
        try:
            document = json.loads(content)
        except ValueError as exc:
            raise JsonSourceError(f"invalid JSON in {self.path}: {exc}") from exc

        raw_value = extract_number(document, self._query, expression=self.json_path)
        return Reading(
            value=raw_value * self.multiplier,
            unit=self.unit,
            timestamp=utcnow(),
            source_id=self.source_id,
        )
