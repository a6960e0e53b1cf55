import csv
from datetime import datetime, timezone

import pytest

from alumetkit.csv_output import CsvConfig, CsvOutput, escape_late_attribute
from alumetkit.measurement import MeasurementPoint, Metric

TS = datetime(2019, 5, 2, 16, 12, 41, 98000, tzinfo=timezone.utc)
FIXED = ["metric", "timestamp", "value", "resource_kind", "resource_id", "consumer_kind", "consumer_id"]
METRIC = Metric("energy", unit_display_name="J", unit_unique_name="joule")


def _rows(path, delimiter=";"):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f, delimiter=delimiter))


def _parse_ts(text):
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def test_header_and_record(tmp_path):
    path = tmp_path / "out.csv"
    point = MeasurementPoint(TS, METRIC, 5).with_attr("b", "2").with_attr("a", "1")
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([point])
    rows = _rows(path)
    assert rows[0] == FIXED + ["a", "b", "__late_attributes"]
    row = rows[1]
    assert row[0] == f"{METRIC.name}_{METRIC.unit_display_name}"
    assert _parse_ts(row[1]) == TS
    assert row[2] == "5"
    assert row[3:7] == [point.resource_kind, point.resource_id, point.consumer_kind, point.consumer_id]
    assert row[7:] == ["1", "2", ""]


@pytest.mark.parametrize(
    "append, display, expected",
    [
        (False, True, METRIC.name),
        (True, False, f"{METRIC.name}_{METRIC.unit_unique_name}"),
    ],
)
def test_metric_name_options(tmp_path, append, display, expected):
    path = tmp_path / "out.csv"
    config = CsvConfig(output_path=path, append_unit_to_metric_name=append, use_unit_display_name=display)
    with CsvOutput(config) as out:
        out.write([MeasurementPoint(TS, METRIC, 1)])
    assert _rows(path)[1][0] == expected


def test_empty_unit_has_no_suffix(tmp_path):
    path = tmp_path / "out.csv"
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([MeasurementPoint(TS, Metric("count"), 1)])
    assert _rows(path)[1][0] == "count"


def test_late_attributes_and_single_header(tmp_path):
    path = tmp_path / "out.csv"
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([MeasurementPoint(TS, METRIC, 1).with_attr("a", "1")])
        out.write([MeasurementPoint(TS, METRIC, 2).with_attr("a", "1").with_attr("c", 3)])
    rows = _rows(path)
    assert sum(1 for r in rows if r[0] == "metric") == 1
    assert rows[0][-1] == "__late_attributes"
    assert rows[2][7] == "1"
    assert rows[2][-1] == "c=3"


def test_missing_attributes_are_blank(tmp_path):
    path = tmp_path / "out.csv"
    first = MeasurementPoint(TS, METRIC, 1).with_attr("a", "x")
    second = MeasurementPoint(TS, METRIC, 2).with_attr("b", "y")
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([first, second])
    rows = _rows(path)
    assert len(rows[0]) == len(rows[1]) == len(rows[2])
    assert rows[1][7:] == ["x", "", ""]
    assert rows[2][7:] == ["y", "", ""]


def test_empty_batch_defers_header(tmp_path):
    path = tmp_path / "out.csv"
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([])
        assert path.read_text(encoding="utf-8") == ""
        out.write([MeasurementPoint(TS, METRIC, 1).with_attr("k", "v")])
    rows = _rows(path)
    assert rows[0] == FIXED + ["k", "__late_attributes"]


def test_value_with_delimiter_round_trips(tmp_path):
    path = tmp_path / "out.csv"
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([MeasurementPoint(TS, METRIC, 1).with_attr("k", 'x;"y"')])
    assert _rows(path)[1][7] == 'x;"y"'


def test_float_value(tmp_path):
    path = tmp_path / "out.csv"
    with CsvOutput(CsvConfig(output_path=path)) as out:
        out.write([MeasurementPoint(TS, METRIC, 123.0)])
    assert _rows(path)[1][2] == "123"


def test_no_force_flush_data_visible_after_close(tmp_path):
    path = tmp_path / "out.csv"
    out = CsvOutput(CsvConfig(output_path=path, force_flush=False))
    out.write([MeasurementPoint(TS, METRIC, 7)])
    out.close()
    assert _rows(path)[1][2] == "7"


def test_escape_late_attribute():
    assert escape_late_attribute("a=b") == "a\\=b"
    assert escape_late_attribute("plain") == "plain"


def test_invalid_delimiter(tmp_path):
    path = tmp_path / "out.csv"
    with pytest.raises(ValueError):
        CsvOutput(CsvConfig(output_path=path, csv_delimiter=";;"))
    assert not path.exists()