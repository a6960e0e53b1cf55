"""Parsing of cgroup v2 ``cpu.stat`` files."""

from __future__ import annotations

import re
from dataclasses import dataclass

_U64 = re.compile(r"\+?[0-9]+")
_U64_MAX = 2**64 - 1


def _parse_u64(text: str) -> int:
    if not _U64.fullmatch(text):
        raise ValueError(f"invalid unsigned integer: {text!r}")
    value = int(text)
    if value > _U64_MAX:
        raise ValueError(f"number too large: {text!r}")
    return value


_KEYS = {
    "usage_usec": "time_used_tot",
    "user_usec": "time_used_user_mode",
    "system_usec": "time_used_system_mode",
}


@dataclass
class CgroupV2Metric:
    """CPU usage of a cgroup, with the pod it belongs to."""

    name: str = ""
    uid: str = ""
    namespace: str = ""
    node: str = ""
    time_used_tot: int = 0
    time_used_user_mode: int = 0
    time_used_system_mode: int = 0

    @classmethod
    def from_str(cls, s: str) -> "CgroupV2Metric":
        """Parse the content of a ``cpu.stat`` file; missing values stay at 0."""
        metric = cls()
        for line in s.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] in _KEYS:
                setattr(metric, _KEYS[parts[0]], _parse_u64(parts[1]))
        return metric