"""Monitoring of the cgroups of OAR 2 jobs: CPU time and memory usage."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, TextIO, Union

from .measurement import MeasurementPoint, Metric

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

CPU_TIME = Metric(
    "cpu_time", "ns", "ns", "Total CPU time consumed by the cgroup (in nanoseconds)."
)
MEMORY_USAGE = Metric("memory_usage", "", "", "Total memory usage by the cgroup (in bytes).")

_CPU_DIR = Path("cpuacct") / "oar"
_MEMORY_DIR = Path("memory") / "oar"
_CPU_FILE = "cpuacct.usage"
_MEMORY_FILE = "memory.usage_in_bytes"

_U64 = re.compile(r"\+?[0-9]+")
_U64_MAX = 2**64 - 1


def _parse_u64(text: str) -> int:
    if not _U64.fullmatch(text) or int(text) > _U64_MAX:
        raise ValueError(f"invalid unsigned integer: {text!r}")
    return int(text)


@dataclass
class Oar2Config:
    """Settings of the OAR 2 job monitoring."""

    path: PathLike = Path("/sys/fs/cgroup")
    poll_interval: timedelta = timedelta(seconds=1)

    @property
    def cpu_dir(self) -> Path:
        """Directory holding the cpuacct cgroups of the jobs."""
        return Path(self.path) / _CPU_DIR

    @property
    def memory_dir(self) -> Path:
        """Directory holding the memory cgroups of the jobs."""
        return Path(self.path) / _MEMORY_DIR


def _looks_like_job(job_name: str) -> bool:
    return any(c.isnumeric() for c in job_name)


def parse_job_id(job_name: str) -> int:
    """Extract the job id from a cgroup name of the form ``<user>_<id>``."""
    _, sep, id_text = job_name.partition("_")
    if not sep:
        raise ValueError(f"Invalid oar cgroup: {job_name!r}")
    return _parse_u64(id_text)


class OarJobSource:
    """Reads the CPU and memory usage files of one OAR job."""

    def __init__(
        self,
        job_id: int,
        cpu_file_path: Path,
        memory_file_path: Path,
        cpu_file: TextIO,
        memory_file: TextIO,
    ) -> None:
        self.job_id = job_id
        self.cpu_file_path = cpu_file_path
        self.memory_file_path = memory_file_path
        self._cpu_file = cpu_file
        self._memory_file = memory_file

    @classmethod
    def _open(cls, job_id: int, cpu_file_path: Path, memory_file_path: Path) -> "OarJobSource":
        try:
            cpu_file = open(cpu_file_path, encoding="utf-8")
        except OSError as exc:
            raise OSError(f"Failed to open CPU usage file at {cpu_file_path}") from exc
        try:
            memory_file = open(memory_file_path, encoding="utf-8")
        except OSError as exc:
            cpu_file.close()
            raise OSError(f"Failed to open memory usage file at {memory_file_path}") from exc
        return cls(job_id, cpu_file_path, memory_file_path, cpu_file, memory_file)

    @staticmethod
    def _read(file: TextIO) -> int:
        file.seek(0)
        return _parse_u64(file.read().strip())

    def poll(self, timestamp: datetime) -> list[MeasurementPoint]:
        """Return the CPU time and the memory usage of the job."""
        cpu_usage = self._read(self._cpu_file)
        memory_usage = self._read(self._memory_file)
        return [
            MeasurementPoint(
                timestamp=timestamp,
                metric=CPU_TIME,
                value=cpu_usage,
                consumer_kind="cgroup",
                consumer_id=str(self.cpu_file_path),
            ).with_attr("oar_job_id", self.job_id),
            MeasurementPoint(
                timestamp=timestamp,
                metric=MEMORY_USAGE,
                value=memory_usage,
                consumer_kind="cgroup",
                consumer_id=str(self.memory_file_path),
            ).with_attr("oar_job_id", self.job_id),
        ]

    def close(self) -> None:
        """Close both files."""
        self._cpu_file.close()
        self._memory_file.close()

    def __enter__(self) -> "OarJobSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _paths(config: Oar2Config, job_name: str) -> tuple[Path, Path]:
    return config.cpu_dir / job_name / _CPU_FILE, config.memory_dir / job_name / _MEMORY_FILE


def scan_jobs(config: Oar2Config) -> list[OarJobSource]:
    """Open a source for every job already running."""
    cpu_dir = config.cpu_dir
    try:
        entries = sorted(cpu_dir.iterdir())
    except OSError as exc:
        raise OSError(f"Invalid oar cpuacct cgroup path, {cpu_dir}") from exc

    sources: list[OarJobSource] = []
    try:
        for entry in entries:
            job_name = entry.name
            if entry.is_dir() and _looks_like_job(job_name):
                job_id = parse_job_id(job_name)
                cpu_path, memory_path = _paths(config, job_name)
                sources.append(OarJobSource._open(job_id, cpu_path, memory_path))
    except BaseException:
        for source in sources:
            source.close()
        raise
    return sources


def source_for_job(config: Oar2Config, job_name: str) -> Optional[OarJobSource]:
    """Open a source for a newly created job cgroup.

    Returns None if the name is not that of a job, or if its files cannot be opened yet.
    """
    if not _looks_like_job(job_name):
        return None
    job_id = parse_job_id(job_name)
    cpu_path, memory_path = _paths(config, job_name)
    log.debug("CPU file path %s", cpu_path)
    log.debug("Memory file path %s", memory_path)
    try:
        return OarJobSource._open(job_id, cpu_path, memory_path)
    except OSError:
        return None