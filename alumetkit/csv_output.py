"""Output that writes measurements to a CSV file."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .csv_helper import CsvHelper
from .measurement import MeasurementPoint, Metric, _display

log = logging.getLogger(__name__)

_FIXED_COLUMNS = (
    "metric",
    "timestamp",
    "value",
    "resource_kind",
    "resource_id",
    "consumer_kind",
    "consumer_id",
)
_LATE_COLUMN = "__late_attributes"


@dataclass
class CsvConfig:
    """Settings of the CSV output."""

    output_path: Union[str, Path] = Path("alumet-output.csv")
    force_flush: bool = True
    append_unit_to_metric_name: bool = True
    use_unit_display_name: bool = True
    csv_delimiter: str = ";"
    csv_escaped_quote: Optional[str] = None


def escape_late_attribute(s: str) -> str:
    """Escape ``=`` in a key or value of the late-attributes column."""
    return s.replace("=", "\\=")


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    text = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if dt.microsecond:
        text += "." + f"{dt.microsecond:06d}".rstrip("0")
    return text + "Z"


class CsvOutput:
    """Writes measurement points to a CSV file, one row per point.

    The attribute columns are fixed by the first non-empty batch; attributes
    seen later go into the ``__late_attributes`` column.
    """

    def __init__(self, config: Optional[CsvConfig] = None) -> None:
        self.config = config if config is not None else CsvConfig()
        escaped_quote = self.config.csv_escaped_quote
        self._helper = CsvHelper(self.config.csv_delimiter, '""' if escaped_quote is None else escaped_quote)
        self._file = open(self.config.output_path, "w", encoding="utf-8", newline="")
        self._header_attributes: Optional[frozenset[str]] = None

    def __enter__(self) -> "CsvOutput":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Flush and close the file."""
        self._file.close()

    def _metric_name(self, metric: Metric) -> str:
        if not self.config.append_unit_to_metric_name:
            return metric.name
        unit = metric.unit_display_name if self.config.use_unit_display_name else metric.unit_unique_name
        return f"{metric.name}_{unit}" if unit else metric.name

    def write(self, measurements: Iterable[MeasurementPoint]) -> None:
        """Append the measurements to the file, writing the header first if needed."""
        points = list(measurements)
        if self._header_attributes is None and points:
            keys = {key for p in points for key in p.attributes}
            self._helper.writeln(self._file, [*_FIXED_COLUMNS, *sorted(keys), _LATE_COLUMN])
            self._header_attributes = frozenset(keys)

        for point in points:
            record = [
                self._metric_name(point.metric),
                _rfc3339(point.timestamp),
                _display(point.value),
                point.resource_kind,
                point.resource_id,
                point.consumer_kind,
                point.consumer_id,
            ]
            known: list[str] = []
            late: list[str] = []
            for key, value in sorted(point.attributes.items()):
                text = _display(value)
                if key in self._header_attributes:
                    known.append(text)
                else:
                    late.append(f"{escape_late_attribute(key)}={escape_late_attribute(text)}")
            record.extend(known)
            record.extend([""] * (len(self._header_attributes) - len(known)))
            record.append(", ".join(late))
            self._helper.writeln(self._file, record)

        if self.config.force_flush:
            log.debug("flushing CSV output")
            self._file.flush()