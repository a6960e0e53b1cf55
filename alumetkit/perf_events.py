"""Names of perf events and detection of online CPUs."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Union


class UnknownEventError(ValueError):
    """Raised when an event name is not recognized."""

    def __init__(self, message: str = "unknown event") -> None:
        super().__init__(message)


class HardwareEvent(enum.IntEnum):
    CPU_CYCLES = 0
    INSTRUCTIONS = 1
    CACHE_REFERENCES = 2
    CACHE_MISSES = 3
    BRANCH_INSTRUCTIONS = 4
    BRANCH_MISSES = 5
    BUS_CYCLES = 6
    STALLED_CYCLES_FRONTEND = 7
    STALLED_CYCLES_BACKEND = 8
    REF_CPU_CYCLES = 9


class SoftwareEvent(enum.IntEnum):
    CPU_CLOCK = 0
    TASK_CLOCK = 1
    PAGE_FAULTS = 2
    CONTEXT_SWITCHES = 3
    CPU_MIGRATIONS = 4
    PAGE_FAULTS_MIN = 5
    PAGE_FAULTS_MAJ = 6
    ALIGNMENT_FAULTS = 7
    EMULATION_FAULTS = 8
    DUMMY = 9


class CacheId(enum.IntEnum):
    L1D = 0
    L1I = 1
    LL = 2
    DTLB = 3
    ITLB = 4
    BPU = 5
    NODE = 6


class CacheOp(enum.IntEnum):
    READ = 0
    WRITE = 1
    PREFETCH = 2


class CacheResult(enum.IntEnum):
    ACCESS = 0
    MISS = 1


@dataclass(frozen=True)
class CacheEvent:
    """A cache event: which cache, which operation, which result."""

    which: CacheId
    operation: CacheOp
    result: CacheResult

    @property
    def config(self) -> int:
        """The ``perf_event_attr.config`` value of this event."""
        return int(self.which) | (int(self.operation) << 8) | (int(self.result) << 16)


PerfEvent = Union[HardwareEvent, SoftwareEvent, CacheEvent, int]


@dataclass(frozen=True)
class NamedPerfEvent:
    """A perf event with a name and a description."""

    name: str
    description: str
    event: PerfEvent

    @classmethod
    def custom(cls, event_id: int) -> "NamedPerfEvent":
        """An event given by its raw id."""
        return cls(name=f"custom-{event_id}", description="?", event=event_id)


def _ascii_upper(s: str) -> str:
    return "".join(c.upper() if c.isascii() else c for c in s)


_HARDWARE = {
    "CPU_CYCLES": (HardwareEvent.CPU_CYCLES, "Total cycles."),
    "INSTRUCTIONS": (HardwareEvent.INSTRUCTIONS, "Retired instructions"),
    "CACHE_REFERENCES": (HardwareEvent.CACHE_REFERENCES, "Cache accesses"),
    "CACHE_MISSES": (HardwareEvent.CACHE_MISSES, "Cache misses"),
    "BRANCH_INSTRUCTIONS": (HardwareEvent.BRANCH_INSTRUCTIONS, "Retired branch instructions"),
    "BRANCH_MISSES": (HardwareEvent.BRANCH_MISSES, "Mispredicted branch instructions"),
    "BUS_CYCLES": (HardwareEvent.BUS_CYCLES, "Bus cycles"),
    "STALLED_CYCLES_FRONTEND": (HardwareEvent.STALLED_CYCLES_FRONTEND, "Stalled cycles during issue"),
    "STALLED_CYCLES_BACKEND": (HardwareEvent.STALLED_CYCLES_BACKEND, "Stalled cycles during retirement"),
    "REF_CPU_CYCLES": (HardwareEvent.REF_CPU_CYCLES, "Total cycles, independent of frequency scaling"),
}

# CPU_CLOCK and TASK_CLOCK need a frequency or period and are not offered here.
_SOFTWARE = {
    "PAGE_FAULTS": (SoftwareEvent.PAGE_FAULTS, "Page faults."),
    "CONTEXT_SWITCHES": (SoftwareEvent.CONTEXT_SWITCHES, "Context switches."),
    "CPU_MIGRATIONS": (SoftwareEvent.CPU_MIGRATIONS, "Process migration to another CPU."),
    "PAGE_FAULTS_MIN": (SoftwareEvent.PAGE_FAULTS_MIN, "Minor page faults: resolved without needing I/O."),
    "PAGE_FAULTS_MAJ": (SoftwareEvent.PAGE_FAULTS_MAJ, "Major page faults: I/O was required to resolve these."),
    "ALIGNMENT_FAULTS": (SoftwareEvent.ALIGNMENT_FAULTS, "Alignment faults that required kernel intervention."),
    "EMULATION_FAULTS": (SoftwareEvent.EMULATION_FAULTS, "Instruction emulation faults."),
    "CGROUP_SWITCHES": (SoftwareEvent.DUMMY, "Context switches to a task in a different cgroup."),
}

_CACHE_IDS = {
    "L1D": (CacheId.L1D, "Level 1 data cache"),
    "L1I": (CacheId.L1I, "Level 1 instruction cache"),
    "LL": (CacheId.LL, "Last-level cache"),
    "DTLB": (CacheId.DTLB, "Data translation lookaside buffer (virtual address translation)"),
    "ITLB": (CacheId.ITLB, "Instruction translation lookaside buffer (virtual address translation)"),
    "BPU": (CacheId.BPU, "Branch prediction."),
    "NODE": (CacheId.NODE, "Memory accesses that stay local to the originating NUMA node"),
}

_CACHE_OPS = {
    "READ": (CacheOp.READ, "read accesses"),
    "WRITE": (CacheOp.WRITE, "write accesses"),
    "PREFETCH": (CacheOp.PREFETCH, "prefetch accesses"),
}

_CACHE_RESULTS = {
    "ACCESS": (CacheResult.ACCESS, "counting the number of cache accesses"),
    "MISS": (CacheResult.MISS, "counting the number of cache misses"),
}


def _lookup(table: dict, key: str, what: str):
    try:
        return table[key]
    except KeyError:
        raise UnknownEventError(f"unknown {what}: {key}") from None


def parse_hardware(event_name: str) -> NamedPerfEvent:
    """Return the hardware event with this name (case-insensitive)."""
    name = _ascii_upper(event_name)
    event, description = _lookup(_HARDWARE, name, "hardware event")
    return NamedPerfEvent(name, description, event)


def parse_software(event_name: str) -> NamedPerfEvent:
    """Return the software event with this name (case-insensitive)."""
    name = _ascii_upper(event_name)
    event, description = _lookup(_SOFTWARE, name, "software event")
    return NamedPerfEvent(name, description, event)


def parse_cache(cache_spec: str) -> NamedPerfEvent:
    """Return the cache event given as ``<name>_<op>_<result>``, e.g. ``LL_READ_MISS``."""
    parts = [_ascii_upper(p) for p in cache_spec.split("_", 2)]
    if len(parts) != 3:
        raise ValueError("invalid cache specification, expected <name>_<op>_<result>")
    name, op, result = parts
    cache_id, id_desc = _lookup(_CACHE_IDS, name, "cache id")
    cache_op, op_desc = _lookup(_CACHE_OPS, op, "cache operation")
    cache_result, result_desc = _lookup(_CACHE_RESULTS, result, "cache result")
    return NamedPerfEvent(
        name=f"{name}_{op}_{result}",
        description=f"{id_desc}, {op_desc}, {result_desc}.",
        event=CacheEvent(cache_id, cache_op, cache_result),
    )


_U32 = re.compile(r"\+?[0-9]+")


def _parse_u32(text: str) -> int:
    if not _U32.fullmatch(text) or int(text) > 2**32 - 1:
        raise ValueError(f"invalid cpu number: {text!r}")
    return int(text)


def parse_cpu_list(cpulist: str) -> list[int]:
    """Expand a CPU list such as ``0-1,64-66`` into the CPU numbers."""
    cpus: list[int] = []
    for item in cpulist.rstrip().split(","):
        bounds = [_parse_u32(b) for b in item.split("-")]
        if len(bounds) == 2:
            cpus.extend(range(bounds[0], bounds[1] + 1))
        elif len(bounds) == 1:
            cpus.append(bounds[0])
        else:
            raise ValueError(f"invalid cpulist: {item}")
    return cpus


def online_cpus() -> list[int]:
    """Return the online CPUs, as listed by sysfs."""
    path = "/sys/devices/system/cpu/online"
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as exc:
        raise OSError(f"Failed to read {path}") from exc
    return parse_cpu_list(text)