from __future__ import annotations

import logging
from pathlib import Path

import pytest

from agentquelia.config import CsvSourceSpec
from agentquelia.errors import (
    CsvSourceError,
    InvalidValueTypeError,
    SourceFileNotFoundError,
    ValueNotFoundError,
)
from agentquelia.sources import CsvFileSource, build_source


def _source(path: Path, **overrides) -> CsvFileSource:
    params = {"path": path, "value_field": "power", "unit": "kW"}
    params.update(overrides)
    return CsvFileSource(**params)


def test_reads_last_row_by_header_name(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text(
        "timestamp,power_kw,status\n2024-01-01,100.5,ok\n2024-01-02,150.7,ok\n2024-01-03,200.3,ok\n",
        encoding="utf-8",
    )

    reading = _source(path, value_field="power_kw").read()

    assert reading.value == pytest.approx(200.3)
    assert reading.unit == "kW"
    assert reading.source_id == f"csv:{path}"
    assert reading.timestamp.tzinfo is not None


def test_reads_first_row_when_configured(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("timestamp,power\n2024-01-01,100.5\n2024-01-02,200.3\n", encoding="utf-8")

    assert _source(path, read_last_row=False).read().value == pytest.approx(100.5)


def test_numeric_value_field_selects_column_by_index(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("a,b,c\n1,2,3\n4,5,6\n", encoding="utf-8")

    assert _source(path, value_field="2").read().value == pytest.approx(6.0)


def test_header_name_wins_over_numeric_index(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("x,0\n7,8\n", encoding="utf-8")

    assert _source(path, value_field="0").read().value == pytest.approx(8.0)


def test_skip_headers_skips_records_after_header(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("ts;power\nunits;kW\n2024-01-01;42\n", encoding="utf-8")

    source = _source(path, delimiter=";", skip_headers=1, read_last_row=False)

    assert source.read().value == pytest.approx(42.0)


def test_blank_lines_do_not_count_toward_skip_headers(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("ts,power\n\n2024-01-01,10\n2024-01-02,20\n", encoding="utf-8")

    source = _source(path, skip_headers=1, read_last_row=False)

    assert source.read().value == pytest.approx(20.0)


def test_blank_line_before_header_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("\nts,power\n2024-01-01,10\n", encoding="utf-8")

    assert _source(path).read().value == pytest.approx(10.0)


def test_malformed_rows_are_dropped_before_selection(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "power.csv"
    path.write_text("ts,power\n2024-01-01,10\n2024-01-02,20\ntruncated\n", encoding="utf-8")

    with caplog.at_level(logging.DEBUG, logger="agentquelia.sources.csv"):
        value = _source(path).read().value

    assert value == pytest.approx(20.0)
    assert any("dropped 1 malformed" in rec.getMessage() for rec in caplog.records)


def test_multiplier_scales_value(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("power\n1500\n", encoding="utf-8")

    assert _source(path, multiplier=0.001).read().value == pytest.approx(1.5)


def test_bom_is_ignored_in_header(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_bytes("\ufeffpower\n3.5\n".encode("utf-8"))

    assert _source(path).read().value == pytest.approx(3.5)


def test_non_numeric_cell_is_invalid_value_type(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("power\nn/a\n", encoding="utf-8")

    with pytest.raises(InvalidValueTypeError) as exc:
        _source(path).read()
    assert "n/a" in str(exc.value)


def test_unknown_column_is_value_not_found(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("ts,voltage\n1,2\n", encoding="utf-8")

    with pytest.raises(ValueNotFoundError):
        _source(path).read()


def test_index_out_of_bounds_is_value_not_found(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("a,b\n1,2\n", encoding="utf-8")

    with pytest.raises(ValueNotFoundError):
        _source(path, value_field="5").read()


def test_header_only_file_has_no_rows(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("ts,power\n", encoding="utf-8")

    with pytest.raises(ValueNotFoundError) as exc:
        _source(path).read()
    assert "no data rows" in str(exc.value)


def test_empty_file_is_csv_error(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("", encoding="utf-8")

    with pytest.raises(CsvSourceError):
        _source(path).read()


def test_missing_file_reports_path(tmp_path: Path) -> None:
    path = tmp_path / "missing.csv"

    with pytest.raises(SourceFileNotFoundError) as exc:
        _source(path).read()
    assert exc.value.kind == "file_not_found"
    assert str(path) in str(exc.value)


def test_build_source_from_spec(tmp_path: Path) -> None:
    path = tmp_path / "power.csv"
    path.write_text("power\n9\n", encoding="utf-8")

    source = build_source(CsvSourceSpec(path=path, value_field="power", unit="W", multiplier=2.0))

    assert isinstance(source, CsvFileSource)
    assert source.read().value == pytest.approx(18.0)
