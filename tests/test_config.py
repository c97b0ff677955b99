from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from agentquelia.config import (
    CONFIG_ENV_VAR,
    DEFAULT_RPC_ENDPOINT,
    AgentConfig,
    CsvSourceSpec,
    HttpSourceSpec,
    JsonSourceSpec,
    expand_env_vars,
    resolve_config_path,
)
from agentquelia.errors import ConfigError

BASE_CONFIG = """
agent:
  instance_id: site-1
  polling_interval_secs: 30
poi:
  api_key: poi-secret-key-123456
supabase:
  url: https://proj.supabase.co
  anon_key: anon-key
"""


def _write_yaml(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")
    return path


def _config_with_source(tmp_path: Path, source: str, extra: str = "") -> Path:
    return _write_yaml(
        tmp_path / "agent.yaml",
        textwrap.dedent(BASE_CONFIG) + textwrap.dedent(source) + textwrap.dedent(extra),
    )


CSV_SOURCE = """
source:
  type: csv
  csv:
    path: /var/lib/meter/power.csv
    value_field: power
    unit: kW
"""


def test_loads_csv_config_with_defaults(tmp_path: Path) -> None:
    cfg = AgentConfig.load(_config_with_source(tmp_path, CSV_SOURCE))

    assert cfg.agent.instance_id == "site-1"
    assert cfg.agent.polling_interval_secs == 30
    assert cfg.source_type == "csv"
    assert cfg.source == CsvSourceSpec(path=Path("/var/lib/meter/power.csv"), value_field="power", unit="kW")
    assert cfg.supabase.rpc_endpoint == DEFAULT_RPC_ENDPOINT
    assert cfg.logging.rotation == "daily"
    assert cfg.logging.max_files == 7
    assert cfg.update.enabled is False
    assert cfg.retry.max_attempts == 5
    assert cfg.retry.initial_delay_ms == 1000
    assert cfg.path == tmp_path / "agent.yaml"


def test_json_and_http_sources(tmp_path: Path) -> None:
    json_cfg = AgentConfig.load(
        _config_with_source(
            tmp_path,
            """
            source:
              type: json
              json:
                path: /tmp/power.json
                json_path: $.data.power
                unit: kW
                multiplier: 0.001
            """,
        )
    )
    assert json_cfg.source == JsonSourceSpec(
        path=Path("/tmp/power.json"), json_path="$.data.power", unit="kW", multiplier=0.001
    )

    http_cfg = AgentConfig.load(
        _config_with_source(
            tmp_path,
            """
            source:
              type: http
              http:
                url: http://meter.local/api
                json_path: $.kw
                unit: kW
                method: post
                headers:
                  Authorization: Bearer abc
                timeout_secs: 5
            """,
        )
    )
    assert isinstance(http_cfg.source, HttpSourceSpec)
    assert http_cfg.source.method == "POST"
    assert dict(http_cfg.source.headers) == {"Authorization": "Bearer abc"}
    assert http_cfg.source.timeout_secs == 5.0


def test_env_references_are_expanded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTQUELIA_TEST_KEY", "from-env")
    path = _write_yaml(
        tmp_path / "agent.yaml",
        textwrap.dedent(BASE_CONFIG).replace("anon_key: anon-key", "anon_key: ${AGENTQUELIA_TEST_KEY}")
        + textwrap.dedent(CSV_SOURCE),
    )

    assert AgentConfig.load(path).supabase.anon_key == "from-env"


def test_unknown_env_reference_is_left_verbatim(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AGENTQUELIA_UNSET_VAR", raising=False)

    assert expand_env_vars("key: ${AGENTQUELIA_UNSET_VAR}") == "key: ${AGENTQUELIA_UNSET_VAR}"


def test_config_path_resolution(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_path = tmp_path / "from-env.yaml"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(env_path))

    assert resolve_config_path() == env_path
    assert resolve_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"

    monkeypatch.delenv(CONFIG_ENV_VAR)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr("agentquelia.config.platform.system", lambda: "Linux")
    assert resolve_config_path() == tmp_path / "xdg" / "agentquelia" / "agent.yaml"


def test_missing_file_is_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(tmp_path / "nope.yaml")
    assert "not found" in str(exc.value)


def test_missing_section_is_reported(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path / "agent.yaml", BASE_CONFIG)

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "missing required section 'source'" in str(exc.value)


def test_missing_source_subsection(tmp_path: Path) -> None:
    path = _config_with_source(tmp_path, "source:\n  type: csv\n")

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "source.csv is required when type is 'csv'" in str(exc.value)


def test_empty_required_string_is_rejected(tmp_path: Path) -> None:
    path = _write_yaml(
        tmp_path / "agent.yaml",
        textwrap.dedent(BASE_CONFIG).replace("instance_id: site-1", 'instance_id: ""') + textwrap.dedent(CSV_SOURCE),
    )

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "agent.instance_id cannot be empty" in str(exc.value)


@pytest.mark.parametrize(
    ("replacement", "message"),
    [
        ("polling_interval_secs: 0", "greater than 0"),
        ("polling_interval_secs: soon", "must be an integer"),
    ],
)
def test_polling_interval_validation(tmp_path: Path, replacement: str, message: str) -> None:
    path = _write_yaml(
        tmp_path / "agent.yaml",
        textwrap.dedent(BASE_CONFIG).replace("polling_interval_secs: 30", replacement) + textwrap.dedent(CSV_SOURCE),
    )

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert message in str(exc.value)


def test_unknown_source_type(tmp_path: Path) -> None:
    path = _config_with_source(tmp_path, "source:\n  type: modbus\n")

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "source.type must be one of" in str(exc.value)


def test_retry_multiplier_must_grow(tmp_path: Path) -> None:
    path = _config_with_source(tmp_path, CSV_SOURCE, "retry:\n  multiplier: 1.0\n")

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "retry.multiplier must be > 1.0" in str(exc.value)


def test_update_section_enables_updates_by_default(tmp_path: Path) -> None:
    path = _config_with_source(tmp_path, CSV_SOURCE, "update:\n  update_url: https://example.invalid/latest.json\n")

    cfg = AgentConfig.load(path)

    assert cfg.update.enabled is True
    assert cfg.update.check_interval_hours == 24


def test_invalid_yaml_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / "agent.yaml"
    path.write_text("agent: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError) as exc:
        AgentConfig.load(path)
    assert "failed to parse" in str(exc.value)


def test_redacted_summary_hides_secrets(tmp_path: Path) -> None:
    cfg = AgentConfig.load(_config_with_source(tmp_path, CSV_SOURCE))

    summary = cfg.redacted_summary()
    assert "poi-secret-k..." in summary
    assert "poi-secret-key-123456" not in summary
    assert "[REDACTED]" in summary

    full = cfg.redacted_summary(show_secrets=True)
    assert "poi-secret-key-123456" in full
    assert "anon-key" in full
