from datetime import datetime, timezone

import pytest

from alumetkit.k8s import CgroupV2MetricFile
from alumetkit.k8s_probe import CounterDiff, K8sProbe, probe_from_created_path

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _stat(total, user, system):
    return f"usage_usec {total}\nuser_usec {user}\nsystem_usec {system}\nnr_periods 0\n"


@pytest.fixture
def stat_file(tmp_path):
    path = tmp_path / "cpu.stat"
    path.write_text(_stat(100, 60, 40))
    return path


def test_counter_first_update_is_none():
    counter = CounterDiff()
    assert counter.update(10) is None
    assert counter.update(25) == 25 - 10


def test_counter_equal_values_give_zero():
    counter = CounterDiff()
    counter.update(7)
    assert counter.update(7) == 0


def test_counter_wraparound_is_corrected():
    counter = CounterDiff(max_value=100)
    counter.update(90)
    assert counter.update(5) == (100 - 90) + 5


def test_probe_poll_reports_differences(stat_file):
    metric_file = CgroupV2MetricFile(
        name="testing_pod",
        path=stat_file,
        file=open(stat_file, encoding="utf-8"),
        uid="uid_test",
        namespace="namespace_test",
        node="node_test",
    )
    with K8sProbe(metric_file) as probe:
        assert probe.poll(TS) == []
        stat_file.write_text(_stat(250, 160, 90))
        points = probe.poll(TS)

    assert [p.metric.name for p in points] == ["total_usage_usec", "user_usage_usec", "system_usage_usec"]
    assert [p.value for p in points] == [250 - 100, 160 - 60, 90 - 40]
    for p in points:
        assert p.consumer_kind == "cgroup"
        assert p.consumer_id == str(stat_file)
        assert p.timestamp == TS
        assert p.attributes == {
            "uid": "uid_test",
            "name": "testing_pod",
            "namespace": "namespace_test",
            "node": "node_test",
        }
    assert metric_file.file.closed


def test_probe_from_non_slice_path_is_none(tmp_path):
    directory = tmp_path / "not-a-pod"
    directory.mkdir()
    assert probe_from_created_path(directory, "", "") is None


def test_probe_from_created_slice(tmp_path):
    directory = tmp_path / "kubepods-burstable-pod32a1942c_b9a8.slice"
    directory.mkdir()
    (directory / "cpu.stat").write_text(_stat(1, 1, 1))
    probe = probe_from_created_path(directory, "", "")
    with probe:
        assert probe.metric_file.uid == "pod32a1942c_b9a8"
        assert probe.metric_file.path == directory / "cpu.stat"
        assert probe.metric_file.name == ""
        assert probe.poll(TS) == []


def test_probe_from_slice_without_cpu_stat(tmp_path):
    directory = tmp_path / "kubepods-podabc.slice"
    directory.mkdir()
    with pytest.raises(OSError):
        probe_from_created_path(directory, "", "")