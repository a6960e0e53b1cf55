"""Minimal CSV writing helper with configurable delimiter and quote escaping."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TextIO


class CsvHelper:
    """Escapes values and writes CSV records."""

    def __init__(self, delimiter: str, escaped_quote: str) -> None:
        if len(delimiter) != 1:
            raise ValueError(f"the CSV delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        self.escaped_quote = escaped_quote
        self._special = frozenset((delimiter, '"', "\n", "\r"))

    def escape_string(self, s: str) -> str:
        """Quote ``s`` if it holds the delimiter, a quote or a line break (RFC 4180)."""
        if any(c in self._special for c in s):
            return '"' + s.replace('"', self.escaped_quote) + '"'
        return s

    def writeln(self, w: TextIO, record: Iterable[str]) -> None:
        """Write one record, followed by a newline, to the text stream ``w``."""
        w.write(self.delimiter.join(self.escape_string(elem) for elem in record) + "\n")