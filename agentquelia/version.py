from __future__ import annotations

import tomllib
from importlib import metadata
from pathlib import Path

DIST_NAME = "agentquelia"
UNKNOWN_VERSION = "0.0.0"


def _pyproject_version(pyproject: Path) -> str | None:
    try:
        data = tomllib.loads(pyproject.read_text("utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return None
    version = (data.get("project") or {}).get("version")
    return str(version) if version else None


def get_version() -> str:
    """Agent version from the installed distribution, else the source checkout's pyproject.toml."""

    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        checkout = Path(__file__).resolve().parents[1] / "pyproject.toml"
        return _pyproject_version(checkout) or UNKNOWN_VERSION


__version__ = get_version()
