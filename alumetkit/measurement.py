"""Measurement points and the metrics they refer to."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Union

AttributeValue = Union[bool, int, float, str]


@dataclass(frozen=True)
class Metric:
    """Definition of a metric: its name, unit and description."""

    name: str
    unit_display_name: str = ""
    unit_unique_name: str = ""
    description: str = ""


@dataclass
class MeasurementPoint:
    """One measured value of a metric, at a given time, with its context."""

    timestamp: datetime
    metric: Metric
    value: Union[int, float]
    resource_kind: str = "local_machine"
    resource_id: str = ""
    consumer_kind: str = "local_machine"
    consumer_id: str = ""
    attributes: dict[str, AttributeValue] = field(default_factory=dict)

    def with_attr(self, key: str, value: AttributeValue) -> "MeasurementPoint":
        """Set an attribute and return the point, for chaining."""
        self.attributes[key] = value
        return self


def _format_float(x: float) -> str:
    """Render a float in plain decimal notation, without a trailing ``.0``."""
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    text = format(Decimal(repr(x)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _display(value: AttributeValue) -> str:
    """Render a measured value or an attribute value as text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)