from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from ..errors import SourceFileNotFoundError, SourceReadError


@dataclass(frozen=True)
class Reading:
    """One sampled measurement, already converted to its configured unit."""

    value: float
    unit: str
    timestamp: datetime
    source_id: str


class Source(Protocol):
    """Small internal source interface used by the scheduler loop."""

    source_id: str

    def read(self) -> Reading: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def read_text_file(path: Path) -> str:
    if not path.exists():
        raise SourceFileNotFoundError(str(path))
    try:
        # utf-8-sig drops the BOM spreadsheet exports like to prepend.
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceReadError(f"failed to read {path}: {exc}") from exc
