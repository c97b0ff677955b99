from __future__ import annotations

import os
import platform
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, TypeAlias

import yaml

from .errors import ConfigError

CONFIG_ENV_VAR = "AGENTQUELIA_CONFIG"
APP_DIR_NAME = "agentquelia"
CONFIG_FILE_NAME = "agent.yaml"

DEFAULT_RPC_ENDPOINT = "/rest/v1/rpc/insert_live_data"

_ENV_REF_RE = re.compile(r"\$\{([^}]+)\}")
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
_SOURCE_TYPES = ("csv", "json", "http")
_LOG_LEVELS = {"trace", "debug", "info", "warn", "warning", "error", "critical"}
_LOG_FORMATS = {"text", "json"}
_LOG_ROTATIONS = {"daily", "hourly", "never"}

SourceType = Literal["csv", "json", "http"]
LogRotation = Literal["daily", "hourly", "never"]


@dataclass(frozen=True)
class CsvSourceSpec:
    path: Path
    value_field: str
    unit: str
    read_last_row: bool = True
    delimiter: str = ","
    skip_headers: int = 0
    multiplier: float = 1.0


@dataclass(frozen=True)
class JsonSourceSpec:
    path: Path
    json_path: str
    unit: str
    multiplier: float = 1.0


@dataclass(frozen=True)
class HttpSourceSpec:
    url: str
    json_path: str
    unit: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    timeout_secs: float = 10.0
    multiplier: float = 1.0


SourceSpec: TypeAlias = CsvSourceSpec | JsonSourceSpec | HttpSourceSpec


@dataclass(frozen=True)
class AgentSettings:
    instance_id: str
    polling_interval_secs: int = 60
    verbose: bool = False


@dataclass(frozen=True)
class PoiSettings:
    api_key: str


@dataclass(frozen=True)
class SupabaseSettings:
    url: str
    anon_key: str
    rpc_endpoint: str = DEFAULT_RPC_ENDPOINT
    timeout_secs: float = 30.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "info"
    format: str = "text"
    directory: Path | None = None
    console_output: bool = True
    rotation: LogRotation = "daily"
    max_files: int = 7


@dataclass(frozen=True)
class UpdateSettings:
    enabled: bool = False
    check_interval_hours: int = 24
    update_url: str = ""
    channel: str = "stable"


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 5
    initial_delay_ms: int = 1000
    max_delay_ms: int = 60000
    multiplier: float = 2.0


@dataclass(frozen=True)
class AgentConfig:
    agent: AgentSettings
    poi: PoiSettings
    supabase: SupabaseSettings
    source: SourceSpec
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    update: UpdateSettings = field(default_factory=UpdateSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    path: Path | None = None

    @property
    def source_type(self) -> SourceType:
        if isinstance(self.source, CsvSourceSpec):
            return "csv"
        if isinstance(self.source, JsonSourceSpec):
            return "json"
        return "http"

    @classmethod
    def load(cls, path: str | os.PathLike[str] | None = None) -> "AgentConfig":
        """Load, expand and validate the agent configuration file.

        Resolution order: explicit path, $AGENTQUELIA_CONFIG, then the
        per-platform default location.
        """

        config_path = resolve_config_path(path)
        if not config_path.exists():
            raise ConfigError(f"configuration file not found: {config_path}")

        try:
            content = config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to read configuration at {config_path}: {exc}") from exc

        try:
            loaded = yaml.safe_load(expand_env_vars(content))
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse configuration at {config_path}: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"configuration at {config_path} must be a YAML object")

        return parse_agent_config(loaded, origin=str(config_path), path=config_path)

    def redacted_summary(self, *, show_secrets: bool = False) -> str:
        lines = [
            "Configuration:",
            f"  Instance ID: {self.agent.instance_id}",
            f"  Polling interval: {self.agent.polling_interval_secs} seconds",
            "",
            "POI:",
            f"  API Key: {self.poi.api_key if show_secrets else self.poi.api_key[:12] + '...'}",
            "",
            "Supabase:",
            f"  URL: {self.supabase.url}",
            f"  RPC Endpoint: {self.supabase.rpc_endpoint}",
            f"  Anon Key: {self.supabase.anon_key if show_secrets else '[REDACTED]'}",
            "",
            "Source:",
            f"  Type: {self.source_type}",
        ]

        src = self.source
        if isinstance(src, CsvSourceSpec):
            lines += [f"  Path: {src.path}", f"  Value Field: {src.value_field}", f"  Unit: {src.unit}"]
        elif isinstance(src, JsonSourceSpec):
            lines += [f"  Path: {src.path}", f"  JSON Path: {src.json_path}", f"  Unit: {src.unit}"]
        else:
            lines += [
                f"  URL: {src.url}",
                f"  Method: {src.method}",
                f"  JSON Path: {src.json_path}",
                f"  Unit: {src.unit}",
            ]

        lines += [
            "",
            "Logging:",
            f"  Level: {self.logging.level}",
            f"  Rotation: {self.logging.rotation}",
            f"  Console output: {self.logging.console_output}",
            "",
            "Update:",
            f"  Enabled: {self.update.enabled}",
        ]
        if self.update.update_url:
            lines.append(f"  URL: {self.update.update_url}")
        return "\n".join(lines)


def expand_env_vars(content: str) -> str:
    """Replace ${NAME} with the environment value; unknown names are kept."""

    return _ENV_REF_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), content)


def resolve_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    from_env = os.getenv(CONFIG_ENV_VAR)
    if from_env and from_env.strip():
        return Path(from_env.strip()).expanduser()
    return default_config_path()


def default_config_path() -> Path:
    system = platform.system()
    if system == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    elif system == "Windows":
        base = Path(os.getenv("APPDATA") or Path.home() / "AppData" / "Roaming")
    else:
        base = Path(os.getenv("XDG_CONFIG_HOME") or Path.home() / ".config")
    return base / APP_DIR_NAME / CONFIG_FILE_NAME


def default_log_dir() -> Path:
    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Logs" / APP_DIR_NAME
    if system == "Windows":
        base = Path(os.getenv("LOCALAPPDATA") or Path.home() / "AppData" / "Local")
        return base / APP_DIR_NAME / "logs"
    base = Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share")
    return base / APP_DIR_NAME / "logs"


def parse_agent_config(raw: Mapping[str, Any], *, origin: str, path: Path | None = None) -> AgentConfig:
    agent_raw = _require_section(raw, "agent", origin=origin)
    poi_raw = _require_section(raw, "poi", origin=origin)
    supabase_raw = _require_section(raw, "supabase", origin=origin)
    source_raw = _require_section(raw, "source", origin=origin)

    polling_interval = _as_int(
        agent_raw.get("polling_interval_secs", 60),
        message=f"{origin}: agent.polling_interval_secs must be an integer",
    )
    if polling_interval <= 0:
        raise ConfigError(f"{origin}: agent.polling_interval_secs must be greater than 0")

    agent = AgentSettings(
        instance_id=_require_str(agent_raw, "instance_id", path=f"{origin}: agent"),
        polling_interval_secs=polling_interval,
        verbose=_as_bool(agent_raw.get("verbose", False), message=f"{origin}: agent.verbose must be a boolean"),
    )

    poi = PoiSettings(api_key=_require_str(poi_raw, "api_key", path=f"{origin}: poi"))

    supabase_timeout = _as_float(
        supabase_raw.get("timeout_secs", 30),
        message=f"{origin}: supabase.timeout_secs must be numeric",
    )
    if supabase_timeout <= 0:
        raise ConfigError(f"{origin}: supabase.timeout_secs must be > 0")

    supabase = SupabaseSettings(
        url=_require_str(supabase_raw, "url", path=f"{origin}: supabase"),
        anon_key=_require_str(supabase_raw, "anon_key", path=f"{origin}: supabase"),
        rpc_endpoint=_as_string(
            supabase_raw.get("rpc_endpoint", DEFAULT_RPC_ENDPOINT),
            message=f"{origin}: supabase.rpc_endpoint must be a string",
        ),
        timeout_secs=supabase_timeout,
    )

    return AgentConfig(
        agent=agent,
        poi=poi,
        supabase=supabase,
        source=parse_source_spec(source_raw, origin=origin),
        logging=_parse_logging(raw.get("logging"), origin=origin),
        update=_parse_update(raw.get("update"), origin=origin),
        retry=_parse_retry(raw.get("retry"), origin=origin),
        path=path,
    )


def parse_source_spec(raw: Mapping[str, Any], *, origin: str) -> SourceSpec:
    source_type = raw.get("type")
    if not isinstance(source_type, str) or source_type.strip().lower() not in _SOURCE_TYPES:
        allowed = ", ".join(_SOURCE_TYPES)
        raise ConfigError(f"{origin}: source.type must be one of: {allowed}")
    source_type = source_type.strip().lower()

    section = raw.get(source_type)
    if section is None:
        raise ConfigError(f"{origin}: source.{source_type} is required when type is '{source_type}'")
    if not isinstance(section, Mapping):
        raise ConfigError(f"{origin}: source.{source_type} must be an object")

    path = f"{origin}: source.{source_type}"
    multiplier = _as_float(section.get("multiplier", 1.0), message=f"{path}.multiplier must be numeric")

    if source_type == "csv":
        skip_headers = _as_int(section.get("skip_headers", 0), message=f"{path}.skip_headers must be an integer")
        if skip_headers < 0:
            raise ConfigError(f"{path}.skip_headers must be >= 0")
        return CsvSourceSpec(
            path=Path(_require_str(section, "path", path=path)).expanduser(),
            value_field=_require_str(section, "value_field", path=path),
            unit=_require_str(section, "unit", path=path),
            read_last_row=_as_bool(
                section.get("read_last_row", True),
                message=f"{path}.read_last_row must be a boolean",
            ),
            delimiter=_parse_delimiter(section.get("delimiter", ","), path=path),
            skip_headers=skip_headers,
            multiplier=multiplier,
        )

    if source_type == "json":
        return JsonSourceSpec(
            path=Path(_require_str(section, "path", path=path)).expanduser(),
            json_path=_require_str(section, "json_path", path=path),
            unit=_require_str(section, "unit", path=path),
            multiplier=multiplier,
        )

    method = _as_string(section.get("method", "GET"), message=f"{path}.method must be a string").strip().upper()
    if method not in _HTTP_METHODS:
        raise ConfigError(f"{path}.method '{method}' is not a supported HTTP method")

    timeout_secs = _as_float(section.get("timeout_secs", 10), message=f"{path}.timeout_secs must be numeric")
    if timeout_secs <= 0:
        raise ConfigError(f"{path}.timeout_secs must be > 0")

    return HttpSourceSpec(
        url=_require_str(section, "url", path=path),
        json_path=_require_str(section, "json_path", path=path),
        unit=_require_str(section, "unit", path=path),
        method=method,
        headers=_parse_headers(section.get("headers"), path=path),
        timeout_secs=timeout_secs,
        multiplier=multiplier,
    )


def _parse_logging(raw: Any, *, origin: str) -> LoggingSettings:
    if raw is None:
        return LoggingSettings()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{origin}: 'logging' must be an object")

    level = _as_string(raw.get("level", "info"), message=f"{origin}: logging.level must be a string").strip().lower()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"{origin}: logging.level '{level}' is not supported")

    log_format = _as_string(raw.get("format", "text"), message=f"{origin}: logging.format must be a string").lower()
    if log_format not in _LOG_FORMATS:
        raise ConfigError(f"{origin}: logging.format must be 'text' or 'json'")

    rotation = _as_string(
        raw.get("rotation", "daily"),
        message=f"{origin}: logging.rotation must be a string",
    ).lower()
    if rotation not in _LOG_ROTATIONS:
        allowed = ", ".join(sorted(_LOG_ROTATIONS))
        raise ConfigError(f"{origin}: logging.rotation must be one of: {allowed}")

    max_files = _as_int(raw.get("max_files", 7), message=f"{origin}: logging.max_files must be an integer")
    if max_files < 0:
        raise ConfigError(f"{origin}: logging.max_files must be >= 0")

    directory_raw = raw.get("directory")
    directory = None
    if directory_raw is not None:
        directory = Path(
            _as_string(directory_raw, message=f"{origin}: logging.directory must be a string")
        ).expanduser()

    return LoggingSettings(
        level=level,
        format=log_format,
        directory=directory,
        console_output=_as_bool(
            raw.get("console_output", True),
            message=f"{origin}: logging.console_output must be a boolean",
        ),
        rotation=rotation,  # type: ignore[arg-type]
        max_files=max_files,
    )


def _parse_update(raw: Any, *, origin: str) -> UpdateSettings:
    # An absent section disables updates; a present one enables them by default.
    if raw is None:
        return UpdateSettings()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{origin}: 'update' must be an object")

    interval = _as_int(
        raw.get("check_interval_hours", 24),
        message=f"{origin}: update.check_interval_hours must be an integer",
    )
    if interval <= 0:
        raise ConfigError(f"{origin}: update.check_interval_hours must be > 0")

    return UpdateSettings(
        enabled=_as_bool(raw.get("enabled", True), message=f"{origin}: update.enabled must be a boolean"),
        check_interval_hours=interval,
        update_url=_as_string(raw.get("update_url", ""), message=f"{origin}: update.update_url must be a string"),
        channel=_as_string(raw.get("channel", "stable"), message=f"{origin}: update.channel must be a string"),
    )


def _parse_retry(raw: Any, *, origin: str) -> RetrySettings:
    if raw is None:
        return RetrySettings()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{origin}: 'retry' must be an object")

    max_attempts = _as_int(raw.get("max_attempts", 5), message=f"{origin}: retry.max_attempts must be an integer")
    if max_attempts < 1:
        raise ConfigError(f"{origin}: retry.max_attempts must be >= 1")

    initial_delay_ms = _as_int(
        raw.get("initial_delay_ms", 1000),
        message=f"{origin}: retry.initial_delay_ms must be an integer",
    )
    max_delay_ms = _as_int(raw.get("max_delay_ms", 60000), message=f"{origin}: retry.max_delay_ms must be an integer")
    if initial_delay_ms < 0 or max_delay_ms < 0:
        raise ConfigError(f"{origin}: retry delays must be >= 0")
    if max_delay_ms < initial_delay_ms:
        raise ConfigError(f"{origin}: retry.max_delay_ms must be >= retry.initial_delay_ms")

    multiplier = _as_float(raw.get("multiplier", 2.0), message=f"{origin}: retry.multiplier must be numeric")
    if multiplier <= 1.0:
        raise ConfigError(f"{origin}: retry.multiplier must be > 1.0")

    return RetrySettings(
        max_attempts=max_attempts,
        initial_delay_ms=initial_delay_ms,
        max_delay_ms=max_delay_ms,
        multiplier=multiplier,
    )


def _parse_delimiter(value: Any, *, path: str) -> str:
    delimiter = _as_string(value, message=f"{path}.delimiter must be a string")
    if not delimiter:
        return ","
    first = delimiter[0]
    if not first.isascii() or first in {"\r", "\n", '"'}:
        raise ConfigError(f"{path}.delimiter must be a single ASCII character")
    return first


def _parse_headers(raw: Any, *, path: str) -> Mapping[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{path}.headers must be an object")

    headers: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not _HEADER_NAME_RE.fullmatch(key):
            raise ConfigError(f"{path}.headers: invalid header name '{key}'")
        if isinstance(value, (dict, list)) or value is None:
            raise ConfigError(f"{path}.headers.{key} must be a scalar")
        text = str(value)
        if "\r" in text or "\n" in text:
            raise ConfigError(f"{path}.headers.{key}: invalid header value")
        headers[key] = text
    return headers


def _require_section(raw: Mapping[str, Any], key: str, *, origin: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if value is None:
        raise ConfigError(f"{origin}: missing required section '{key}'")
    if not isinstance(value, Mapping):
        raise ConfigError(f"{origin}: '{key}' must be an object")
    return value


def _require_str(raw: Mapping[str, Any], key: str, *, path: str) -> str:
    value = raw.get(key)
    if value is None:
        raise ConfigError(f"{path}.{key} is required")
    if not isinstance(value, str):
        raise ConfigError(f"{path}.{key} must be a string")
    if not value.strip():
        raise ConfigError(f"{path}.{key} cannot be empty")
    return value


def _as_float(value: Any, *, message: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(message)
    if isinstance(value, (int, float)):
        return float(value)
    raise ConfigError(message)


def _as_int(value: Any, *, message: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(message)
    if isinstance(value, int):
        return value
    raise ConfigError(message)


def _as_bool(value: Any, *, message: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(message)


def _as_string(value: Any, *, message: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(message)
