from datetime import datetime, timezone

import pytest

from alumetkit.jetson import (
    InaChannel,
    InaRailMetric,
    InaSensor,
    JetsonInaSource,
    detect_hierarchy_modern,
    detect_hierarchy_old_v4,
)


def _write(directory, files):
    for name, content in files.items():
        (directory / name).write_text(content)


@pytest.fixture
def modern_root(tmp_path):
    root = tmp_path / "ina-modern"
    hwmon0 = root / "1-0040" / "hwmon" / "hwmon0"
    hwmon1 = root / "1-0041" / "hwmon" / "hwmon1"
    hwmon0.mkdir(parents=True)
    hwmon1.mkdir(parents=True)
    _write(
        hwmon0,
        {
            "in0_label": "Sensor 0, channel 0",
            "curr0_input": "0",
            "in0_input": "1",
            "curr0_crit": "2",
            "crit0_max": "3",
            "in1_label": "Sensor 0, channel 1",
            "curr1_input": "10",
            "in1_input": "11",
            "curr1_crit": "12",
            "crit1_max": "13",
        },
    )
    _write(
        hwmon1,
        {
            "in0_label": "Sensor 1, channel 0",
            "curr0_input": "100",
            "in0_input": "101",
            "curr0_crit": "102",
            "crit0_max": "103",
        },
    )
    return root


@pytest.fixture
def old_root(tmp_path):
    root = tmp_path / "ina-old"
    device0 = root / "1-0040" / "iio:device0"
    device1 = root / "1-0041" / "iio:device1"
    device0.mkdir(parents=True)
    device1.mkdir(parents=True)
    _write(
        device0,
        {
            "rail_name_0": "Sensor 0, channel 0",
            "in_current0_input": "0",
            "in_voltage0_input": "1",
            "in_power0_input": "2",
            "crit_current_limit_0": "3",
            "warn_current_limit_0": "4",
            "rail_name_1": "Sensor 0, channel 1",
            "in_current1_input": "10",
            "in_voltage1_input": "11",
            "in_power1_input": "12",
            "crit_current_limit_1": "13",
            "warn_current_limit_1": "14",
        },
    )
    _write(
        device1,
        {
            "rail_name_0": "Sensor 1, channel 0",
            "in_current0_input": "100",
            "in_voltage0_input": "101",
            "in_power0_input": "102",
            "crit_current_limit_0": "103",
            "warn_current_limit_0": "104",
        },
    )
    return root


EXPECTED_LABELS = [
    ["Sensor 0, channel 0", "Sensor 0, channel 1"],
    ["Sensor 1, channel 0"],
]


def test_ina_modern(modern_root):
    sensors = detect_hierarchy_modern(modern_root)
    assert [s.i2c_id for s in sensors] == ["1-0040", "1-0041"]
    expected_metrics = sorted(["in_input", "curr_input", "curr_crit", "crit_max"])
    for sensor, expected_labels in zip(sensors, EXPECTED_LABELS):
        assert sorted(c.label for c in sensor.channels) == expected_labels
        for channel in sensor.channels:
            assert sorted(m.name for m in channel.metrics) == expected_metrics


def test_ina_old(old_root):
    sensors = detect_hierarchy_old_v4(old_root)
    assert [s.i2c_id for s in sensors] == ["1-0040", "1-0041"]
    expected_metrics = sorted(
        [
            "in_current_input",
            "in_voltage_input",
            "in_power_input",
            "crit_current_limit",
            "warn_current_limit",
        ]
    )
    for sensor, expected_labels in zip(sensors, EXPECTED_LABELS):
        assert sorted(c.label for c in sensor.channels) == expected_labels
        for channel in sensor.channels:
            assert sorted(m.name for m in channel.metrics) == expected_metrics


def test_no_ina(tmp_path):
    root = tmp_path / ".i-do-not-exist"
    assert detect_hierarchy_modern(root) == []
    assert detect_hierarchy_old_v4(root) == []


def test_modern_units(modern_root):
    sensors = detect_hierarchy_modern(modern_root)
    units = {m.name: m.unit for m in sensors[0].channels[0].metrics}
    assert units == {"curr_input": "mA", "in_input": "mV", "curr_crit": "mA", "crit_max": "mA"}


def test_old_units(old_root):
    sensors = detect_hierarchy_old_v4(old_root)
    units = {m.name: m.unit for m in sensors[0].channels[0].metrics}
    assert units["in_power_input"] == "mW"
    assert units["in_voltage_input"] == "mV"
    assert units["in_current_input"] == "mA"


def test_channel_ids_and_paths(modern_root):
    sensors = detect_hierarchy_modern(modern_root)
    assert [c.id for c in sensors[0].channels] == [0, 1]
    assert sensors[0].path == modern_root / "1-0040"


def test_missing_label_becomes_question_mark(tmp_path):
    hwmon = tmp_path / "root" / "2-0040" / "hwmon" / "hwmon3"
    hwmon.mkdir(parents=True)
    (hwmon / "curr0_input").write_text("5")
    sensors = detect_hierarchy_modern(tmp_path / "root")
    assert sensors[0].channels[0].label == "?"


def test_unknown_unit_is_an_error(tmp_path):
    hwmon = tmp_path / "root" / "2-0040" / "hwmon" / "hwmon0"
    hwmon.mkdir(parents=True)
    (hwmon / "temp0_input").write_text("5")
    with pytest.raises(ValueError, match="Could not guess the unit"):
        detect_hierarchy_modern(tmp_path / "root")


def test_missing_channels_dir_is_an_error(tmp_path):
    (tmp_path / "root" / "2-0040").mkdir(parents=True)
    with pytest.raises(OSError):
        detect_hierarchy_modern(tmp_path / "root")


def test_open_sensors_requires_a_sensor():
    with pytest.raises(ValueError, match="without any sensor"):
        JetsonInaSource.open_sensors([])


def test_poll_reads_values(modern_root):
    sensors = detect_hierarchy_modern(modern_root)
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with JetsonInaSource.open_sensors(sensors) as source:
        points = source.poll(ts)
    values = {(p.attributes["jetson_ina_sensor"], p.metric.name): p.value for p in points}
    assert len(points) == 12
    assert values[("1-0040", "Sensor 0, channel 0::curr_input")] == 0
    assert values[("1-0040", "Sensor 0, channel 1::in_input")] == 11
    assert values[("1-0041", "Sensor 1, channel 0::crit_max")] == 103
    assert all(p.timestamp == ts for p in points)
    assert all(p.attributes["jetson_ina_channel_description"] == "" for p in points)


def test_poll_rereads_file(modern_root):
    sensors = detect_hierarchy_modern(modern_root)
    file = modern_root / "1-0041" / "hwmon" / "hwmon1" / "in0_input"
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with JetsonInaSource.open_sensors(sensors) as source:
        first = {p.metric.name: p.value for p in source.poll(ts)}
        file.write_text("4242\n")
        second = {p.metric.name: p.value for p in source.poll(ts)}
    assert first["Sensor 1, channel 0::in_input"] == 101
    assert second["Sensor 1, channel 0::in_input"] == 4242


def test_metric_description_and_unit(tmp_path):
    path = tmp_path / "curr0_input"
    path.write_text("7\n")
    sensor = InaSensor(
        path=tmp_path,
        i2c_id="1-0040",
        channels=[
            InaChannel(
                id=0,
                label="VDD_IN",
                metrics=[InaRailMetric(path=path, unit="mA", name="curr_input")],
                description="board input",
            )
        ],
    )
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with JetsonInaSource.open_sensors([sensor]) as source:
        (point,) = source.poll(ts)
    assert point.value == 7
    assert point.metric.name == "VDD_IN::curr_input"
    assert point.metric.description == "channel 0 (board input); curr_input"
    assert point.metric.unit_display_name == "mA"
    assert point.attributes == {
        "jetson_ina_sensor": "1-0040",
        "jetson_ina_channel_label": "VDD_IN",
        "jetson_ina_channel_description": "board input",
    }


def test_poll_rejects_garbage(tmp_path):
    path = tmp_path / "curr0_input"
    path.write_text("not a number")
    sensor = InaSensor(
        path=tmp_path,
        i2c_id="1-0040",
        channels=[InaChannel(id=0, label="x", metrics=[InaRailMetric(path=path, unit="mA", name="curr_input")])],
    )
    with JetsonInaSource.open_sensors([sensor]) as source:
        with pytest.raises(ValueError, match="failed to parse"):
            source.poll(datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_open_missing_file_is_an_error(tmp_path):
    sensor = InaSensor(
        path=tmp_path,
        i2c_id="1-0040",
        channels=[
            InaChannel(
                id=0, label="x", metrics=[InaRailMetric(path=tmp_path / "missing", unit="mA", name="curr_input")]
            )
        ],
    )
    with pytest.raises(OSError, match="Could not open virtual file"):
        JetsonInaSource.open_sensors([sensor])