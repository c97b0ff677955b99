from __future__ import annotations

import hashlib
import logging
import os
import platform
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import requests
from packaging.version import InvalidVersion as _PackagingInvalidVersion
from packaging.version import Version

from .config import AgentConfig
from .errors import (
    ChecksumMismatch,
    InvalidVersion,
    UpdateCheckFailed,
    UpdateDownloadFailed,
    UpdateInstallFailed,
)
from .version import __version__

logger = logging.getLogger("agentquelia.update")

_ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
}
_OS_KEYS = {"Darwin": "macos", "Windows": "windows", "Linux": "linux"}


@dataclass(frozen=True)
class ReleaseAsset:
    url: str
    checksum: str


@dataclass(frozen=True)
class ReleaseManifest:
    version: str
    assets: Mapping[str, ReleaseAsset]

    @classmethod
    def from_payload(cls, payload: Any) -> "ReleaseManifest":
        if not isinstance(payload, Mapping):
            raise UpdateCheckFailed("release manifest must be a JSON object")
        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            raise UpdateCheckFailed("release manifest is missing 'version'")
        assets_raw = payload.get("assets")
        if not isinstance(assets_raw, Mapping):
            raise UpdateCheckFailed("release manifest is missing 'assets'")

        assets: dict[str, ReleaseAsset] = {}
        for key, item in assets_raw.items():
            if item is None:
                continue
            if not isinstance(item, Mapping):
                raise UpdateCheckFailed(f"release asset '{key}' must be an object")
            url = item.get("url")
            checksum = item.get("checksum")
            if not isinstance(url, str) or not isinstance(checksum, str):
                raise UpdateCheckFailed(f"release asset '{key}' requires 'url' and 'checksum'")
            assets[str(key)] = ReleaseAsset(url=url, checksum=checksum)
        return cls(version=version.strip(), assets=assets)


def platform_key(system: str | None = None, machine: str | None = None) -> str | None:
    """Manifest asset key for this host, e.g. 'macos-aarch64'."""

    os_key = _OS_KEYS.get(system or platform.system())
    arch = _ARCH_ALIASES.get((machine or platform.machine()).lower())
    if os_key is None or arch is None:
        return None
    return f"{os_key}-{arch}"


def parse_version(raw: str, *, label: str) -> Version:
    try:
        return Version(raw)
    except _PackagingInvalidVersion as exc:
        raise InvalidVersion(f"{label}: {exc}") from exc


def current_executable() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable)
    return Path(sys.argv[0]).resolve()


def fetch_manifest(session: requests.Session, url: str, *, timeout_s: float = 30.0) -> ReleaseManifest:
    try:
        resp = session.get(url, timeout=timeout_s)
    except requests.RequestException as exc:
        raise UpdateCheckFailed(str(exc)) from exc
    if not 200 <= resp.status_code < 300:
        raise UpdateCheckFailed(f"HTTP {resp.status_code}")
    try:
        payload = resp.json()
    except ValueError as exc:
        raise UpdateCheckFailed(f"release manifest is not valid JSON: {exc}") from exc
    return ReleaseManifest.from_payload(payload)


def verify_checksum(data: bytes, expected: str) -> str:
    """Compare sha256(data) with an optionally 'sha256:'-prefixed hex digest."""

    expected_hash = expected.strip().lower()
    if expected_hash.startswith("sha256:"):
        expected_hash = expected_hash[len("sha256:") :]
    actual_hash = hashlib.sha256(data).hexdigest()
    if actual_hash != expected_hash:
        raise ChecksumMismatch(expected=expected_hash, actual=actual_hash)
    logger.debug("Checksum verified: %s", actual_hash)
    return actual_hash


def download_asset(session: requests.Session, asset: ReleaseAsset, *, timeout_s: float = 300.0) -> bytes:
    logger.info("Downloading update from %s", asset.url)
    try:
        resp = session.get(asset.url, timeout=timeout_s)
    except requests.RequestException as exc:
        raise UpdateDownloadFailed(str(exc)) from exc
    if not 200 <= resp.status_code < 300:
        raise UpdateDownloadFailed(f"HTTP {resp.status_code}")
    return resp.content


def install_binary(data: bytes, target: Path) -> None:
    """Atomically replace target with data (temp file in the same directory + os.replace)."""

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=".agentquelia-update-", dir=target.parent)
    except OSError as exc:
        raise UpdateInstallFailed(f"failed to create temp file: {exc}") from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        if os.name != "nt":
            os.chmod(tmp_path, 0o755)
        os.replace(tmp_path, target)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise UpdateInstallFailed(str(exc)) from exc


def check_and_update(
    config: AgentConfig,
    *,
    force: bool = False,
    session: requests.Session | None = None,
    target: Path | None = None,
    current_version: str = __version__,
    system: str | None = None,
    machine: str | None = None,
) -> bool:
    """Check the release manifest and install a newer build.

    Returns True when an update was installed.
    """

    settings = config.update
    if not settings.enabled and not force:
        logger.info("Updates are disabled in configuration")
        return False
    if not settings.update_url:
        raise UpdateCheckFailed("no update URL configured")

    http = session or requests.Session()
    manifest = fetch_manifest(http, settings.update_url)

    current = parse_version(current_version, label="current")
    latest = parse_version(manifest.version, label="latest")
    logger.info("Version check complete (current=%s latest=%s)", current, latest)

    if latest <= current and not force:
        return False

    key = platform_key(system, machine)
    if key is None:
        raise UpdateCheckFailed("unsupported platform for auto-update")
    asset = manifest.assets.get(key)
    if asset is None:
        raise UpdateCheckFailed(f"no {key} asset found in release manifest")

    logger.info("New version available: %s -> %s", current, latest)
    data = download_asset(http, asset)
    verify_checksum(data, asset.checksum)

    destination = target or current_executable()
    logger.info("Installing update to %s", destination)
    install_binary(data, destination)
    logger.info("Update installed successfully")
    return True
