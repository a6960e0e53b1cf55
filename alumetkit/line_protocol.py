"""InfluxDB v2 line protocol and write client."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import requests

from .measurement import _format_float

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_KEY_CHARS = (",", "=", " ")


def escape_string(s: str, chars_to_escape: Iterable[str]) -> str:
    """Prefix every character of ``s`` found in ``chars_to_escape`` with a backslash."""
    special = frozenset(chars_to_escape)
    return "".join("\\" + c if c in special else c for c in s)


def _nanoseconds(timestamp: Union[datetime, int]) -> int:
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        ns = (timestamp - _EPOCH) // timedelta(microseconds=1) * 1000
    else:
        ns = int(timestamp)
    if ns < 0:
        raise ValueError(f"timestamp before the Unix epoch: {timestamp!r}")
    return ns


class LineProtocolBuilder:
    """Builds line protocol text, one line per measurement."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._after_first_field = False

    def measurement(self, name: str) -> "LineProtocolBuilder":
        """Start a new line with the measurement name."""
        if self._after_first_field:
            self._after_first_field = False
            self._parts.append("\n")
        self._parts.append(escape_string(name, (",", " ")))
        return self

    def tag(self, key: str, value: str) -> "LineProtocolBuilder":
        """Add a tag; empty values are skipped since tags cannot be empty."""
        if value:
            self._parts.append(f",{escape_string(key, _KEY_CHARS)}={escape_string(value, _KEY_CHARS)}")
        return self

    def _field(self, key: str, serialized_value: str) -> "LineProtocolBuilder":
        separator = "," if self._after_first_field else " "
        self._parts.append(f"{separator}{escape_string(key, _KEY_CHARS)}={serialized_value}")
        self._after_first_field = True
        return self

    def field_float(self, key: str, value: float) -> "LineProtocolBuilder":
        return self._field(key, _format_float(float(value)))

    def field_int(self, key: str, value: int) -> "LineProtocolBuilder":
        return self._field(key, f"{int(value)}i")

    def field_uint(self, key: str, value: int) -> "LineProtocolBuilder":
        if value < 0:
            raise ValueError(f"unsigned field {key!r} cannot be negative: {value}")
        return self._field(key, f"{int(value)}u")

    def field_string(self, key: str, value: str) -> "LineProtocolBuilder":
        return self._field(key, '"' + escape_string(value, ('"', "\\")) + '"')

    def field_bool(self, key: str, value: bool) -> "LineProtocolBuilder":
        return self._field(key, "T" if value else "F")

    def timestamp(self, timestamp: Union[datetime, int]) -> "LineProtocolBuilder":
        """End the line with a timestamp: a datetime or nanoseconds since the epoch."""
        self._parts.append(f" {_nanoseconds(timestamp)}")
        return self

    def build(self) -> str:
        """Return the text; the current line must have at least one field."""
        if not self._after_first_field:
            raise ValueError("wrong use of the LineProtocolBuilder: at least one field is required")
        return "".join(self._parts)


class InfluxClient:
    """Writes line protocol data to an InfluxDB v2 server."""

    def __init__(self, host: str, token: str, session: Optional[requests.Session] = None) -> None:
        self.write_url = f"{host}/api/v2/write"
        self._token_header = f"Token {token}"
        self._session = session if session is not None else requests.Session()

    def write(self, org: str, bucket: str, data: str) -> None:
        """Send the data to the given organization and bucket; raise on an HTTP error."""
        response = self._session.post(
            self.write_url,
            params={"org": org, "bucket": bucket, "precision": "ns"},
            headers={
                "Authorization": self._token_header,
                "Accept": "application/json",
                "Content-Type": "text/plain; charset=utf-8",
            },
            data=data.encode("utf-8"),
        )
        response.raise_for_status()

    def test_write(self, org: str, bucket: str) -> None:
        """Check that writing to the organization and bucket works, by sending no data."""
        self.write(org, bucket, "")