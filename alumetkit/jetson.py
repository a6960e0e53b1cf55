"""Detection and polling of the INA3221 power sensors embedded in Jetson devices."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .measurement import MeasurementPoint, Metric

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

SYSFS_INA = "/sys/bus/i2c/drivers/ina3221"
SYSFS_INA_OLD = "/sys/bus/i2c/drivers/ina3221x"

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1

_MILLI_AMPERE = "mA"
_MILLI_VOLT = "mV"
_MILLI_WATT = "mW"

_MODERN_PATTERN = re.compile(r"(?P<prefix>[a-zA-Z]+)(?P<id>[0-9]+)_(?P<suffix>[a-zA-Z]+)")
_OLD_PATTERN = re.compile(r"(?P<prefix>[a-zA-Z_]+?)_?(?P<id>[0-9]+)(?P<suffix>_([a-zA-Z]+))?")


@dataclass
class InaRailMetric:
    """A metric file available in a channel."""

    path: Path
    unit: str
    name: str


@dataclass
class InaChannel:
    """A channel of an INA sensor, with its metrics."""

    id: int
    label: str
    metrics: list[InaRailMetric] = field(default_factory=list)
    description: Optional[str] = None


@dataclass
class InaSensor:
    """An INA sensor found in sysfs."""

    path: Path
    i2c_id: str
    channels: list[InaChannel] = field(default_factory=list)


@dataclass
class _Layout:
    """What differs between the sysfs hierarchies of the Jetpack versions."""

    pattern: re.Pattern
    channels_dir: Callable[[Path], Path]
    guess_unit: Callable[[str], Optional[str]]
    is_label: Callable[[str, Optional[str]], bool]
    metric_name: Callable[[str, Optional[str]], str]


def _first_child_starting_with(directory: Path, prefix: str) -> Path:
    try:
        children = sorted(directory.iterdir())
    except OSError as exc:
        raise OSError(f"failed to list content of directory {directory}") from exc
    for child in children:
        if child.name.startswith(prefix):
            return child
    raise FileNotFoundError(f"no entry starting with {prefix!r} found in {directory}")


def _modern_channels_dir(sensor_path: Path) -> Path:
    return _first_child_starting_with(sensor_path / "hwmon", "hwmon")


def _modern_unit(prefix: str) -> Optional[str]:
    if prefix in ("curr", "crit"):
        return _MILLI_AMPERE
    if prefix == "in":
        return _MILLI_VOLT
    if "volt" in prefix:
        return _MILLI_VOLT
    if "current" in prefix:
        return _MILLI_AMPERE
    return None


def _modern_is_label(prefix: str, suffix: Optional[str]) -> bool:
    if suffix is None:
        raise ValueError("parsing failed: missing suffix")
    return prefix == "in" and suffix == "label"


def _modern_metric_name(prefix: str, suffix: Optional[str]) -> str:
    return f"{prefix}_{suffix}"


def _old_channels_dir(sensor_path: Path) -> Path:
    return _first_child_starting_with(sensor_path, "iio:device")


def _old_unit(prefix: str) -> Optional[str]:
    if "current" in prefix:
        return _MILLI_AMPERE
    if "voltage" in prefix:
        return _MILLI_VOLT
    if "power" in prefix:
        return _MILLI_WATT
    return None


def _old_is_label(prefix: str, suffix: Optional[str]) -> bool:
    return prefix == "rail_name" and suffix is None


def _old_metric_name(prefix: str, suffix: Optional[str]) -> str:
    return prefix if suffix is None else prefix + suffix


_MODERN = _Layout(_MODERN_PATTERN, _modern_channels_dir, _modern_unit, _modern_is_label, _modern_metric_name)
_OLD = _Layout(_OLD_PATTERN, _old_channels_dir, _old_unit, _old_is_label, _old_metric_name)


def _sensor_channels(channels_dir: Path, layout: _Layout) -> list[InaChannel]:
    metrics: dict[int, list[InaRailMetric]] = {}
    labels: dict[int, str] = {}
    for path in sorted(channels_dir.iterdir()):
        filename = path.name
        groups = layout.pattern.search(filename)
        if groups is None:
            continue
        prefix = groups.group("prefix")
        suffix = groups.group("suffix")
        channel_id = int(groups.group("id"))
        if channel_id > _U32_MAX:
            raise ValueError(f"Invalid channel id: {groups.group('id')}")
        try:
            is_label = layout.is_label(prefix, suffix)
        except ValueError as exc:
            raise ValueError(f"Failed to parse filename of INA metric: {filename}") from exc

        if is_label:
            labels[channel_id] = path.read_text(encoding="utf-8")
        else:
            unit = layout.guess_unit(prefix)
            if unit is None:
                raise ValueError(f"Could not guess the unit of this unknown INA3221 metric: {path}")
            metrics.setdefault(channel_id, []).append(
                InaRailMetric(path=path, unit=unit, name=layout.metric_name(prefix, suffix))
            )
    return [
        InaChannel(id=channel_id, label=labels.get(channel_id, "?"), metrics=channel_metrics)
        for channel_id, channel_metrics in sorted(metrics.items())
    ]


def _detect_hierarchy(sys_ina: PathLike, layout: _Layout) -> list[InaSensor]:
    directory = Path(sys_ina)
    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise OSError(f"Failed to list the content of directory '{directory}': {exc}") from exc

    sensors = []
    for path in entries:
        if not path.is_dir():
            continue
        channels = _sensor_channels(layout.channels_dir(path), layout)
        sensors.append(InaSensor(path=path, i2c_id=path.name, channels=channels))
    return sensors


def detect_hierarchy_modern(sys_ina: PathLike) -> list[InaSensor]:
    """Detect the INA sensors under ``sys_ina``, laid out as by Jetpack 5.0 and later."""
    return _detect_hierarchy(sys_ina, _MODERN)


def detect_hierarchy_old_v4(sys_ina: PathLike) -> list[InaSensor]:
    """Detect the INA sensors under ``sys_ina``, laid out as by Jetpack 4.x."""
    return _detect_hierarchy(sys_ina, _OLD)


def detect_ina_sensors() -> list[InaSensor]:
    """Return all the INA sensors of the machine, whatever the Jetpack version."""
    sensors = detect_hierarchy_modern(SYSFS_INA)
    if not sensors:
        sensors = detect_hierarchy_old_v4(SYSFS_INA_OLD)
    return sensors


@dataclass
class _OpenedMetric:
    metric: Metric
    file: BinaryIO


@dataclass
class _OpenedChannel:
    label: str
    description: str
    metrics: list[_OpenedMetric]


@dataclass
class _OpenedSensor:
    i2c_id: str
    channels: list[_OpenedChannel]


class JetsonInaSource:
    """Reads the metric files of INA sensors and turns them into measurement points."""

    def __init__(self, opened_sensors: list[_OpenedSensor]) -> None:
        self._sensors = opened_sensors

    @classmethod
    def open_sensors(cls, sensors: list[InaSensor]) -> "JetsonInaSource":
        """Open the metric files of the sensors for reading."""
        if not sensors:
            raise ValueError("Cannot construct a JetsonInaSource without any sensor.")
        opened_files: list[BinaryIO] = []
        opened_sensors = []
        try:
            for sensor in sensors:
                channels = []
                for channel in sensor.channels:
                    opened_metrics = []
                    for rail in channel.metrics:
                        if channel.description is not None:
                            description = f"channel {channel.id} ({channel.description}); {rail.name}"
                        else:
                            description = f"channel {channel.id}; {rail.name}"
                        metric = Metric(
                            name=f"{channel.label}::{rail.name}",
                            unit_display_name=rail.unit,
                            unit_unique_name=rail.unit,
                            description=description,
                        )
                        try:
                            file = open(rail.path, "rb")
                        except OSError as exc:
                            raise OSError(f"Could not open virtual file {rail.path}") from exc
                        opened_files.append(file)
                        opened_metrics.append(_OpenedMetric(metric, file))
                    channels.append(_OpenedChannel(channel.label, channel.description or "", opened_metrics))
                opened_sensors.append(_OpenedSensor(sensor.i2c_id, channels))
        except BaseException:
            for file in opened_files:
                file.close()
            raise
        return cls(opened_sensors)

    def poll(self, timestamp: datetime) -> list[MeasurementPoint]:
        """Read every metric file and return one point per metric."""
        points = []
        for sensor in self._sensors:
            for channel in sensor.channels:
                for opened in channel.metrics:
                    opened.file.seek(0)
                    content = opened.file.read().decode("utf-8")
                    text = content.rstrip()
                    try:
                        value = int(text)
                        if not text.lstrip("+").isdigit() or value > _U64_MAX:
                            raise ValueError(text)
                    except ValueError as exc:
                        raise ValueError(f"failed to parse {opened.file.name}: '{content}'") from exc
                    point = MeasurementPoint(timestamp=timestamp, metric=opened.metric, value=value)
                    point.with_attr("jetson_ina_sensor", sensor.i2c_id)
                    point.with_attr("jetson_ina_channel_label", channel.label)
                    point.with_attr("jetson_ina_channel_description", channel.description)
                    points.append(point)
        return points

    def close(self) -> None:
        """Close all the opened files."""
        for sensor in self._sensors:
            for channel in sensor.channels:
                for opened in channel.metrics:
                    opened.file.close()

    def __enter__(self) -> "JetsonInaSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()