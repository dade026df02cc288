"""Block device I/O statistics gathered from /proc/diskstats.

The collector keeps the latest counters for every device, tracks the peak
read and write rates between samples and counts how often a counter went
backwards (wrapped around). Reporting a device clears those peak and
overflow figures so that each report covers the period since the last one.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Optional

__all__ = [
    "FILE_DISKSTATS",
    "DeviceStats",
    "DeviceReport",
    "DiskStatsCollector",
]

FILE_DISKSTATS = "/proc/diskstats"

_NUM_DISKSTATS_FIELDS = 14
_NUM_DISKSTATS_PARTITION_FIELDS = 7
_DEV_NAME_MAX = 127

_UINT_BITS = 32
_ULONG_BITS = 64

# Bit width of each numeric column after the device name, in file order.
_COLUMN_BITS = (
    _ULONG_BITS, _ULONG_BITS, _ULONG_BITS, _ULONG_BITS,
    _ULONG_BITS, _ULONG_BITS, _ULONG_BITS,
    _UINT_BITS, _UINT_BITS, _UINT_BITS, _UINT_BITS,
)

_NUMBER_RE = re.compile(r"[+-]?[0-9]+")


@dataclass
class DeviceStats:
    """Cumulative counters of one block device or partition."""

    dev_major: int
    dev_minor: int
    dev_name: str
    rd_ios: int = 0
    rd_merges: int = 0
    rd_sectors: int = 0
    rd_ticks: int = 0
    wr_ios: int = 0
    wr_merges: int = 0
    wr_sectors: int = 0
    wr_ticks: int = 0
    ios_pgr: int = 0
    tot_ticks: int = 0
    rq_ticks: int = 0


@dataclass(frozen=True)
class DeviceReport:
    """What is reported for a device; fields absent for partitions are None."""

    device_major: int
    device_minor: int
    device_name: str
    device_readsector: int
    device_readtime: Optional[int]
    device_writesector: int
    device_writetime: Optional[int]
    device_queue: Optional[int]
    device_iototaltime: Optional[int]
    device_rsps_max: float
    device_wsps_max: float
    overflow_drs: int
    overflow_drt: int
    overflow_dws: int
    overflow_dwt: int
    overflow_dit: int


@dataclass
class _Entry:
    stats: DeviceStats
    field_num: int
    timestamp: float = 0
    drs_ps_max: float = 0.0
    dws_ps_max: float = 0.0
    overflow_drs: int = 0
    overflow_drt: int = 0
    overflow_dws: int = 0
    overflow_dwt: int = 0
    overflow_dit: int = 0

    def reset_counters(self) -> None:
        self.drs_ps_max = 0.0
        self.dws_ps_max = 0.0
        self.overflow_drs = 0
        self.overflow_drt = 0
        self.overflow_dws = 0
        self.overflow_dwt = 0
        self.overflow_dit = 0

    def check_peak(self, rd_sec: int, wr_sec: int, duration: float) -> None:
        if duration <= 0:
            return
        if rd_sec >= self.stats.rd_sectors:
            rate = (rd_sec - self.stats.rd_sectors) / duration
            self.drs_ps_max = max(self.drs_ps_max, rate)
        if wr_sec >= self.stats.wr_sectors:
            rate = (wr_sec - self.stats.wr_sectors) / duration
            self.dws_ps_max = max(self.dws_ps_max, rate)

    def check_overflow(
        self, rd_sec: int, wr_sec: int, rd_ticks: int, wr_ticks: int, rq_ticks: int
    ) -> None:
        if self.stats.rd_sectors > rd_sec:
            self.overflow_drs += 1
        if self.stats.wr_sectors > wr_sec:
            self.overflow_dws += 1
        if self.stats.rd_ticks > rd_ticks:
            self.overflow_drt += 1
        if self.stats.wr_ticks > wr_ticks:
            self.overflow_dwt += 1
        if self.stats.rq_ticks > rq_ticks:
            self.overflow_dit += 1


def _to_unsigned(token: str, bits: int) -> int:
    return int(token) % (1 << bits)


def _scan_line(line: str) -> tuple[int, list]:
    """Convert the leading columns of a line the way a fixed scan format would.

    Returns how many columns were converted (at most 14) and their values.
    """
    tokens = line.split()
    values: list = []
    for index in range(2):
        if index >= len(tokens) or not _NUMBER_RE.fullmatch(tokens[index]):
            return len(values), values
        values.append(_to_unsigned(tokens[index], _UINT_BITS))
    if len(tokens) < 3:
        return len(values), values
    values.append(tokens[2][:_DEV_NAME_MAX])
    for bits, token in zip(_COLUMN_BITS, tokens[3:]):
        if not _NUMBER_RE.fullmatch(token):
            break
        values.append(_to_unsigned(token, bits))
    return len(values), values


class DiskStatsCollector:
    """Keeps per-device counters across successive samples of /proc/diskstats."""

    def __init__(self) -> None:
        self._entries: dict[tuple[int, int], _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def sample_file(self, path: str = FILE_DISKSTATS, now: Optional[float] = None) -> None:
        """Read the statistics file and take a sample of it."""
        with open(path, encoding="ascii", errors="replace") as stream:
            text = stream.read()
        self.sample(text, int(time.time()) if now is None else now)

    def sample(self, text: str, now: float) -> None:
        """Record one sample taken at time ``now`` (seconds)."""
        for line in text.splitlines():
            count, values = _scan_line(line)
            if count not in (_NUM_DISKSTATS_FIELDS, _NUM_DISKSTATS_PARTITION_FIELDS):
                continue
            self._record(count, values, now)

    def _record(self, count: int, values: list, now: float) -> None:
        dev_major, dev_minor, dev_name = values[0], values[1], values[2]
        rd_ios, f5, f6, f7 = values[3:7]
        full = count == _NUM_DISKSTATS_FIELDS
        if full:
            wr_ios, wr_merges, wr_sec, wr_ticks, ios_pgr, tot_ticks, rq_ticks = values[7:14]

        key = (dev_major, dev_minor)
        entry = self._entries.get(key)
        if entry is not None:
            duration = now - entry.timestamp
            if full:
                entry.check_peak(f6, wr_sec, duration)
                entry.check_overflow(f6, wr_sec, f7 % (1 << _UINT_BITS), wr_ticks, rq_ticks)
            else:
                entry.check_peak(f5, f7, duration)
                entry.check_overflow(f5, f7, 0, 0, 0)
        else:
            entry = _Entry(
                stats=DeviceStats(dev_major=dev_major, dev_minor=dev_minor, dev_name=dev_name),
                field_num=count,
            )
            self._entries[key] = entry

        stats = entry.stats
        if full:
            stats.rd_ios = rd_ios
            stats.rd_merges = f5
            stats.rd_sectors = f6
            stats.rd_ticks = f7 % (1 << _UINT_BITS)
            stats.wr_ios = wr_ios
            stats.wr_merges = wr_merges
            stats.wr_sectors = wr_sec
            stats.wr_ticks = wr_ticks
            stats.ios_pgr = ios_pgr
            stats.tot_ticks = tot_ticks
            stats.rq_ticks = rq_ticks
        else:
            stats.rd_ios = rd_ios
            stats.rd_sectors = f5
            stats.wr_ios = f6
            stats.wr_sectors = f7
        entry.timestamp = now

    def stats(self, major: int, minor: int) -> Optional[DeviceStats]:
        """Return the latest counters of a device, or None if it was never seen."""
        entry = self._entries.get((major, minor))
        return entry.stats if entry is not None else None

    def report(self, major: int, minor: int) -> Optional[DeviceReport]:
        """Report a device and clear its peak and overflow figures.

        Returns None when the device has not appeared in any sample.
        """
        entry = self._entries.get((major, minor))
        if entry is None:
            return None
        stats = entry.stats
        full = entry.field_num == _NUM_DISKSTATS_FIELDS
        report = DeviceReport(
            device_major=major,
            device_minor=minor,
            device_name=stats.dev_name,
            device_readsector=stats.rd_sectors,
            device_readtime=stats.rd_ticks if full else None,
            device_writesector=stats.wr_sectors,
            device_writetime=stats.wr_ticks if full else None,
            device_queue=stats.ios_pgr if full else None,
            device_iototaltime=stats.rq_ticks if full else None,
            device_rsps_max=entry.drs_ps_max,
            device_wsps_max=entry.dws_ps_max,
            overflow_drs=entry.overflow_drs,
            overflow_drt=entry.overflow_drt,
            overflow_dws=entry.overflow_dws,
            overflow_dwt=entry.overflow_dwt,
            overflow_dit=entry.overflow_dit,
        )
        entry.reset_counters()
        return report