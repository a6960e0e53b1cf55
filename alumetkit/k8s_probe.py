"""Measurement source for the CPU usage of Kubernetes pods."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from .k8s import CgroupV2MetricFile, gather_value, get_pod_name
from .measurement import MeasurementPoint, Metric

log = logging.getLogger(__name__)

CGROUP_MAX_TIME_COUNTER = 2**64 - 1

TOTAL_USAGE = Metric("total_usage_usec", "µs", "us", "Total CPU usage time by the group")
USER_USAGE = Metric("user_usage_usec", "µs", "us", "User CPU usage time by the group")
SYSTEM_USAGE = Metric("system_usage_usec", "µs", "us", "System CPU usage time by the group")


class CounterDiff:
    """Computes the increase of a counter between two readings, handling wrap-around."""

    def __init__(self, max_value: int = CGROUP_MAX_TIME_COUNTER) -> None:
        self.max_value = max_value
        self.previous: Optional[int] = None

    def update(self, value: int) -> Optional[int]:
        """Record a new reading and return the increase, or None on the first reading."""
        previous, self.previous = self.previous, value
        if previous is None:
            return None
        if value >= previous:
            return value - previous
        # The counter went past its maximum and started again from zero.
        return (self.max_value - previous) + value


@dataclass
class K8sConfig:
    """Settings of the Kubernetes pod monitoring."""

    path: Union[str, Path] = Path("/sys/fs/cgroup/kubepods.slice/")
    poll_interval: timedelta = timedelta(seconds=1)
    kubernetes_api_url: str = "https://127.0.0.1:8080"
    hostname: str = ""


@dataclass
class K8sProbe:
    """Polls the ``cpu.stat`` file of one pod and reports the CPU time used since the last poll."""

    metric_file: CgroupV2MetricFile
    time_tot: CounterDiff = field(default_factory=CounterDiff)
    time_usr: CounterDiff = field(default_factory=CounterDiff)
    time_sys: CounterDiff = field(default_factory=CounterDiff)

    def __enter__(self) -> "K8sProbe":
        return self

    def __exit__(self, *exc_info) -> None:
        self.metric_file.close()

    def poll(self, timestamp: datetime) -> list[MeasurementPoint]:
        """Read the file and return the points for the counters that have a previous value."""
        metrics = gather_value(self.metric_file)
        consumer_id = str(self.metric_file.path)
        diffs = (
            (TOTAL_USAGE, self.time_tot.update(metrics.time_used_tot)),
            (USER_USAGE, self.time_usr.update(metrics.time_used_user_mode)),
            (SYSTEM_USAGE, self.time_sys.update(metrics.time_used_system_mode)),
        )
        points = []
        for metric, diff in diffs:
            if diff is None:
                continue
            point = MeasurementPoint(
                timestamp=timestamp,
                metric=metric,
                value=diff,
                resource_kind="local_machine",
                resource_id="",
                consumer_kind="cgroup",
                consumer_id=consumer_id,
            )
            point.with_attr("uid", metrics.uid).with_attr("name", metrics.name)
            point.with_attr("namespace", metrics.namespace).with_attr("node", metrics.node)
            points.append(point)
        return points


def probe_from_created_path(
    path: Union[str, Path], hostname: str, kubernetes_api_url: str
) -> Optional[K8sProbe]:
    """Build a probe for a newly created pod cgroup directory.

    Returns None if the directory is not a ``.slice``, since it holds no ``cpu.stat``.
    """
    path = Path(path)
    if path.suffix != ".slice":
        return None
    log.debug(".slice extension found, will continue")

    full_name = path.name.removesuffix(".slice")
    uid_raw = full_name.split("pod")[-1]
    uid = f"pod{uid_raw}"
    name, namespace, node = get_pod_name(uid_raw.replace("_", "-"), hostname, kubernetes_api_url)

    cpu_stat = path / "cpu.stat"
    try:
        file = open(cpu_stat, encoding="utf-8")
    except OSError as exc:
        raise OSError(f"failed to open file {cpu_stat}") from exc
    metric_file = CgroupV2MetricFile(
        name=name, path=cpu_stat, file=file, uid=uid, namespace=namespace, node=node
    )
    return K8sProbe(metric_file)