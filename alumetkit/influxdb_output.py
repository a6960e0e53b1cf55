"""Output that sends measurements to InfluxDB v2."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Set
from dataclasses import dataclass, field
from typing import Optional

import requests

from .line_protocol import InfluxClient, LineProtocolBuilder
from .measurement import MeasurementPoint, _display

log = logging.getLogger(__name__)

_RESERVED_TAGS = frozenset(
    ("resource_kind", "resource_id", "resource_consumer_kind", "resource_consumer_id")
)
_RESERVED_FIELD = "value"
_RESERVED_PREFIX = "alumet_attribute__"


class AttributeAs(enum.Enum):
    """How measurement attributes are sent to InfluxDB by default."""

    TAG = "tag"
    FIELD = "field"


@dataclass
class InfluxDbConfig:
    """Settings of the InfluxDB output."""

    host: str = "http://localhost:8086"
    token: str = "placeholder"
    org: str = "FILL ME"
    bucket: str = "FILL ME"
    attributes_as: AttributeAs = AttributeAs.FIELD
    attributes_as_tags: Set[str] = field(default_factory=frozenset)
    attributes_as_fields: Set[str] = field(default_factory=frozenset)


def _is_tag(key: str, attributes_as: AttributeAs, as_tags: Set[str], as_fields: Set[str]) -> bool:
    if attributes_as is AttributeAs.TAG:
        return key not in as_fields
    return key in as_tags


def _add_field(builder: LineProtocolBuilder, key: str, value) -> None:
    if isinstance(value, bool):
        builder.field_bool(key, value)
    elif isinstance(value, float):
        builder.field_float(key, value)
    elif isinstance(value, int):
        if value < 0:
            builder.field_int(key, value)
        else:
            builder.field_uint(key, value)
    else:
        builder.field_string(key, str(value))


def build_line_protocol(
    measurements: Iterable[MeasurementPoint],
    attributes_as: AttributeAs = AttributeAs.FIELD,
    attributes_as_tags: Set[str] = frozenset(),
    attributes_as_fields: Set[str] = frozenset(),
) -> str:
    """Turn measurement points into line protocol text.

    Resources and consumers become tags; attributes become tags or fields
    according to ``attributes_as`` and the two override sets. Keys that clash
    with the reserved ones are prefixed with ``alumet_attribute__``.
    """
    builder = LineProtocolBuilder()
    for point in measurements:
        builder.measurement(point.metric.name)
        builder.tag("resource_kind", point.resource_kind)
        builder.tag("resource_id", point.resource_id)
        builder.tag("resource_consumer_kind", point.consumer_kind)
        builder.tag("resource_consumer_id", point.consumer_id)

        tags = []
        fields = []
        for key, value in point.attributes.items():
            if _is_tag(key, attributes_as, attributes_as_tags, attributes_as_fields):
                tags.append((key, value))
            else:
                fields.append((key, value))

        for key, value in tags:
            tag_key = _RESERVED_PREFIX + key if key in _RESERVED_TAGS else key
            builder.tag(tag_key, _display(value))
        for key, value in fields:
            field_key = _RESERVED_PREFIX + key if key == _RESERVED_FIELD else key
            _add_field(builder, field_key, value)

        if isinstance(point.value, float):
            builder.field_float("value", point.value)
        else:
            builder.field_uint("value", point.value)
        builder.timestamp(point.timestamp)
    return builder.build()


class InfluxDbOutput:
    """Sends measurement points to an InfluxDB bucket.

    The connection is checked when the output is created.
    """

    def __init__(self, config: Optional[InfluxDbConfig] = None, client: Optional[InfluxClient] = None) -> None:
        self.config = config if config is not None else InfluxDbConfig()
        self.client = client if client is not None else InfluxClient(self.config.host, self.config.token)
        log.info("Testing connection to InfluxDB...")
        try:
            self.client.test_write(self.config.org, self.config.bucket)
        except requests.RequestException as exc:
            raise ConnectionError(
                f"Cannot write to InfluxDB host {self.config.host} in org {self.config.org} "
                f"and bucket {self.config.bucket}. Please check your configuration."
            ) from exc
        log.info("Test successful.")

    def write(self, measurements: Iterable[MeasurementPoint]) -> None:
        """Send the measurements to InfluxDB."""
        data = build_line_protocol(
            measurements,
            self.config.attributes_as,
            self.config.attributes_as_tags,
            self.config.attributes_as_fields,
        )
        log.debug("Line protocol data: %r", data)
        try:
            self.client.write(self.config.org, self.config.bucket, data)
        except requests.RequestException as exc:
            raise ConnectionError("failed to write measurements to InfluxDB") from exc