from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ...config import CsvSourceSpec
from ...errors import CsvSourceError, InvalidValueTypeError, ValueNotFoundError
from ..base import Reading, read_text_file, utcnow

logger = logging.getLogger("agentquelia.sources.csv")


@dataclass
class CsvFileSource:
    """Reads one cell from a delimited text file with a header row.

    Rows whose field count differs from the header are dropped before the
    first/last row is selected.
    """

    path: Path
    value_field: str
    unit: str
    read_last_row: bool = True
    delimiter: str = ","
    skip_headers: int = 0
    multiplier: float = 1.0
    source_id: str = field(init=False)

    def __post_init__(self) -> None:
        self.source_id = f"csv:{self.path}"

    @classmethod
    def from_spec(cls, spec: CsvSourceSpec) -> "CsvFileSource":
        return cls(
            path=spec.path,
            value_field=spec.value_field,
            unit=spec.unit,
            read_last_row=spec.read_last_row,
            delimiter=spec.delimiter,
            skip_headers=spec.skip_headers,
            multiplier=spec.multiplier,
        )

    def read(self) -> Reading:
        content = read_text_file(self.path)
        raw_value = self.parse_value(content)
        return Reading(
            value=raw_value * self.multiplier,
            unit=self.unit,
            timestamp=utcnow(),
            source_id=self.source_id,
        )

    def parse_value(self, content: str) -> float:
        try:
            reader = csv.reader(io.StringIO(content), delimiter=self.delimiter)
            # Blank lines are not records; they never count as header, skipped or data rows.
            records = [row for row in reader if row]
        except csv.Error as exc:
            raise CsvSourceError(str(exc)) from exc

        if not records:
            raise CsvSourceError("missing header row")
        header, records = records[0], records[1:]

        column_idx = self._column_index(header)

        candidates = records[self.skip_headers :]
        rows = [row for row in candidates if len(row) == len(header)]
        if len(rows) != len(candidates):
            logger.debug(
                "dropped %s malformed CSV rows from %s",
                len(candidates) - len(rows),
                self.path,
            )

        if not rows:
            raise ValueNotFoundError("no data rows found in CSV")

        row = rows[-1] if self.read_last_row else rows[0]
        if column_idx >= len(row):
            raise ValueNotFoundError(f"column index {column_idx} out of bounds")

        cell = row[column_idx]
        try:
            return float(cell.strip())
        except ValueError:
            raise InvalidValueTypeError(f"'{cell}'") from None

    def _column_index(self, header: list[str]) -> int:
        if self.value_field in header:
            return header.index(self.value_field)
        if self.value_field.isascii() and self.value_field.isdigit():
            return int(self.value_field)
        raise ValueNotFoundError(f"column '{self.value_field}' not found in CSV")
