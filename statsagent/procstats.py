"""Parsers for the kernel statistics files under /proc.

Each parser takes the text of one file and returns a small record. The
file paths are exposed as constants so callers can read the files
themselves (or feed recorded samples in tests).
"""

from __future__ import annotations

import math
import re
import sys
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "FILE_CPUSTAT",
    "FILE_LOADAVG",
    "FILE_MEMINFO",
    "FILE_CPUINFO",
    "FILE_PROFILE",
    "INT64_MAX",
    "FileFormatError",
    "CpuStats",
    "LoadAverage",
    "MemoryStats",
    "CpuInfo",
    "ProfileRow",
    "parse_int64",
    "parse_float8",
    "split_fields",
    "parse_cpustats",
    "parse_loadavg",
    "parse_memory",
    "parse_cpuinfo",
    "parse_mem_total",
    "parse_profile",
]

FILE_CPUSTAT = "/proc/stat"
FILE_LOADAVG = "/proc/loadavg"
FILE_MEMINFO = "/proc/meminfo"
FILE_CPUINFO = "/proc/cpuinfo"
FILE_PROFILE = "/proc/systemtap/statsinfo_prof/profile"

INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)

_NUM_STAT_FIELDS_MIN = 6
_NUM_LOADAVG_FIELDS_MIN = 3
_NUM_PROFILE_FIELDS = 3
_MEMINFO_READ_LIMIT = 2047
_MEMINFO_NAME_MAX = 15
_CPUINFO_VALUE_LEN = 255

_C_SPACE = " \t\n\v\f\r"

_INT_RE = re.compile(
    r"[ \t\n\v\f\r]*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)"
)
_FLOAT_PREFIX_RE = re.compile(
    r"[ \t\n\v\f\r]*([+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
    r"|inf(?:inity)?|nan))",
    re.IGNORECASE,
)
_HEX_FLOAT_RE = re.compile(
    r"[ \t\n\v\f\r]*([+-]?0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)"
    r"(?:[pP][+-]?[0-9]+)?)"
)
_LEADING_INT_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")
_CPU_LINE_RE = re.compile(r"^cpu\s+")


class FileFormatError(ValueError):
    """A statistics file does not have the expected layout."""

    def __init__(self, path: str, detail: Optional[str] = None) -> None:
        message = f'unexpected file format: "{path}"'
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.path = path
        self.detail = detail


@dataclass(frozen=True)
class CpuStats:
    """Cumulative CPU times and overflow flags relative to a previous sample."""

    cpu_id: str
    cpu_user: int
    cpu_system: int
    cpu_idle: int
    cpu_iowait: int
    overflow_user: int = 0
    overflow_system: int = 0
    overflow_idle: int = 0
    overflow_iowait: int = 0


@dataclass(frozen=True)
class LoadAverage:
    """System load averages over 1, 5 and 15 minutes."""

    loadavg1: float
    loadavg5: float
    loadavg15: float


@dataclass(frozen=True)
class MemoryStats:
    """Memory usage in kB as reported by the kernel."""

    memfree: int
    buffers: int
    cached: int
    swap: int
    dirty: int


@dataclass(frozen=True)
class CpuInfo:
    """Processor model and topology summary."""

    vendor_id: str
    model_name: str
    cpu_mhz: float
    processors: int
    threads_per_core: int
    cores_per_socket: int
    sockets: int


@dataclass(frozen=True)
class ProfileRow:
    """One row of the profiling output."""

    processing: str
    execute: int
    total_exec_time: float


def parse_int64(value: str) -> Optional[int]:
    """Parse a signed 64-bit integer in C notation; None if invalid or out of range.

    The word ``INFINITE`` stands for the largest 64-bit value.
    """
    if value == "INFINITE":
        return INT64_MAX
    match = _INT_RE.fullmatch(value)
    if match is None:
        return None
    sign, digits = match.groups()
    if digits[:2] in ("0x", "0X"):
        number = int(digits[2:], 16)
    elif len(digits) > 1 and digits[0] == "0":
        number = int(digits, 8)
    else:
        number = int(digits, 10)
    if sign == "-":
        number = -number
    if not INT64_MIN <= number <= INT64_MAX:
        return None
    return number


def _mantissa_is_zero(text: str) -> bool:
    body = text.lstrip("+-")
    if body[:2] in ("0x", "0X"):
        body = re.split(r"[pP]", body[2:])[0]
        return not re.search(r"[1-9a-fA-F]", body)
    body = re.split(r"[eE]", body)[0]
    return not re.search(r"[1-9]", body)


def parse_float8(value: str) -> Optional[float]:
    """Parse a double; None if invalid, overflowing or underflowing.

    The word ``INFINITE`` stands for the largest finite double.
    """
    if value == "INFINITE":
        return sys.float_info.max
    hex_match = _HEX_FLOAT_RE.fullmatch(value)
    if hex_match is not None:
        text = hex_match.group(1)
        try:
            result = float.fromhex(text)
        except OverflowError:
            return None
    else:
        match = _FLOAT_PREFIX_RE.fullmatch(value)
        if match is None:
            return None
        text = match.group(1)
        result = float(text)
        lowered = text.lower()
        if "inf" in lowered or "nan" in lowered:
            return result
    if math.isinf(result):
        return None
    if result == 0.0 and not _mantissa_is_zero(text):
        return None
    if result != 0.0 and abs(result) < sys.float_info.min:
        return None
    return result


def split_fields(text: str, pattern: str) -> list[str]:
    """Split text at every match of a regular expression.

    An empty text yields no fields at all; otherwise the piece after the
    last separator is always kept, even when it is empty.
    """
    if not text:
        return []
    try:
        regex = re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"invalid regular expression: {exc}") from exc
    fields: list[str] = []
    pos = 0
    while True:
        match = regex.search(text, pos)
        if match is None or match.end() == match.start():
            break
        fields.append(text[pos:match.start()])
        pos = match.end()
    fields.append(text[pos:])
    return fields


def _lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _c_atoi(text: str) -> int:
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else 0


def _c_atof(text: str) -> float:
    match = _FLOAT_PREFIX_RE.match(text)
    return float(match.group(1)) if match else 0.0


def _c_strip(text: str) -> str:
    return text.strip(_C_SPACE)


def parse_cpustats(text: str, previous: Optional[CpuStats] = None) -> CpuStats:
    """Read the aggregate ``cpu`` line of /proc/stat.

    Each overflow flag is 1 when the counter went below the value in
    ``previous``; with no previous sample all counters compare with zero.
    """
    records = [line for line in _lines(text) if _CPU_LINE_RE.search(line)]
    if not records:
        raise FileFormatError(FILE_CPUSTAT)
    fields = split_fields(records[0], r"\s+")
    if len(fields) < _NUM_STAT_FIELDS_MIN:
        raise FileFormatError(FILE_CPUSTAT, "number of fields is not corresponding")

    def counter(index: int) -> int:
        parsed = parse_int64(fields[index])
        return parsed if parsed is not None else 0

    user, system, idle, iowait = counter(1), counter(3), counter(4), counter(5)
    prev = previous or CpuStats("", 0, 0, 0, 0)
    return CpuStats(
        cpu_id=fields[0],
        cpu_user=user,
        cpu_system=system,
        cpu_idle=idle,
        cpu_iowait=iowait,
        overflow_user=int(user < prev.cpu_user),
        overflow_system=int(system < prev.cpu_system),
        overflow_idle=int(idle < prev.cpu_idle),
        overflow_iowait=int(iowait < prev.cpu_iowait),
    )


def parse_loadavg(text: str) -> LoadAverage:
    """Read the three load averages at the start of /proc/loadavg."""
    values: list[float] = []
    pos = 0
    while len(values) < _NUM_LOADAVG_FIELDS_MIN:
        match = _FLOAT_PREFIX_RE.match(text, pos)
        if match is None:
            break
        values.append(float(match.group(1)))
        pos = match.end()
    if len(values) < _NUM_LOADAVG_FIELDS_MIN:
        raise FileFormatError(FILE_LOADAVG, "number of fields is not corresponding")
    return LoadAverage(*values)


def parse_memory(text: str) -> MemoryStats:
    """Read free, buffer, cache, swap and dirty memory from /proc/meminfo."""
    wanted = {"Buffers", "Cached", "Dirty", "MemFree", "SwapFree", "SwapTotal"}
    found = dict.fromkeys(wanted, 0)
    for line in _lines(text[:_MEMINFO_READ_LIMIT]):
        name, sep, rest = line.partition(":")
        if not sep or len(name) > _MEMINFO_NAME_MAX or name not in wanted:
            continue
        match = _LEADING_INT_RE.match(rest)
        found[name] = int(match.group(1)) if match else 0
    return MemoryStats(
        memfree=found["MemFree"],
        buffers=found["Buffers"],
        cached=found["Cached"],
        swap=found["SwapTotal"] - found["SwapFree"],
        dirty=found["Dirty"],
    )


def parse_cpuinfo(text: str) -> CpuInfo:
    """Summarise /proc/cpuinfo: first model seen, processor and socket counts."""
    vendor_id = ""
    model_name = ""
    cpu_mhz = 0.0
    processors = 0
    siblings = 0
    cores_per_socket = 0
    max_physical_id = 0

    for line in _lines(text):
        item, sep, value = line.partition(":")
        if not sep:
            continue
        item = _c_strip(item)
        value = _c_strip(value)
        if item == "vendor_id":
            if not vendor_id:
                vendor_id = value[:_CPUINFO_VALUE_LEN]
        elif item == "model name":
            if not model_name:
                model_name = value[:_CPUINFO_VALUE_LEN]
        elif item == "cpu MHz":
            if cpu_mhz == 0:
                cpu_mhz = _c_atof(value)
        elif item == "processor":
            processors += 1
        elif item == "siblings":
            if siblings == 0:
                siblings = _c_atoi(value)
        elif item == "cpu cores":
            if cores_per_socket == 0:
                cores_per_socket = _c_atoi(value)
        elif item == "physical id":
            max_physical_id = max(max_physical_id, _c_atoi(value))

    threads = int(siblings / cores_per_socket) if cores_per_socket > 0 else 0
    return CpuInfo(
        vendor_id=vendor_id,
        model_name=model_name,
        cpu_mhz=cpu_mhz,
        processors=processors,
        threads_per_core=threads,
        cores_per_socket=cores_per_socket,
        sockets=max_physical_id + 1,
    )


def parse_mem_total(text: str) -> int:
    """Return total memory in bytes from the MemTotal line of /proc/meminfo."""
    mem_total = 0
    for line in _lines(text):
        item, sep, value = line.partition(":")
        if not sep:
            continue
        if _c_strip(item) == "MemTotal":
            amount = _c_strip(value).split(" ", 1)[0]
            mem_total = _c_atoi(amount) * 1024
    return mem_total


def parse_profile(text: str) -> list[ProfileRow]:
    """Read comma-separated ``processing,execute,total_exec_time`` rows."""
    rows: list[ProfileRow] = []
    for line in _lines(text):
        fields = split_fields(line, ",")
        if len(fields) != _NUM_PROFILE_FIELDS:
            raise FileFormatError(FILE_PROFILE, "number of fields is not corresponding")
        execute = parse_int64(fields[1])
        total = parse_float8(fields[2])
        rows.append(
            ProfileRow(
                processing=fields[0],
                execute=execute if execute is not None else 0,
                total_exec_time=total if total is not None else 0.0,
            )
        )
    return rows