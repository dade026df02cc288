# statsagent

Building blocks for an agent that collects statistics about a database
server and its host. The package uses only the standard library. Most of
it works on text you pass in, such as the contents of `/proc/stat` or
`/proc/diskstats`, and it returns typed results. The one exception is
`DiskStatsCollector.sample_file`, which reads the diskstats file itself.

## Modules

- `statsagent.procstats` parses host statistics.
  - `parse_cpustats(text, previous)` reads the aggregate `cpu` line of `/proc/stat`. It returns a `CpuStats`, and sets an overflow flag for each counter that went below the value in `previous`.
  - These parsers each read the matching `/proc` file:
    - `parse_loadavg` returns a `LoadAverage`.
    - `parse_memory` returns a `MemoryStats`.
    - `parse_cpuinfo` returns a `CpuInfo`.
    - `parse_mem_total` returns total memory in bytes.
  - `parse_profile` reads comma-separated `processing,execute,total_exec_time` rows into `ProfileRow` records.
  - `parse_int64`, `parse_float8` and `split_fields` are the number and field helpers. The first two return `None` for invalid input.
  - Malformed files raise `FileFormatError`.
  - File paths are available as constants: `FILE_CPUSTAT`, `FILE_LOADAVG`, `FILE_MEMINFO`, `FILE_CPUINFO` and `FILE_PROFILE`.
- `statsagent.diskstats` provides `DiskStatsCollector`.
  - Feed it `/proc/diskstats` samples with `sample(text, now)`, or read the file directly with `sample_file()`.
  - `report(major, minor)` returns a `DeviceReport`. It holds the counters, the peak read and write sector rates, and the counter-overflow counts. It then clears the peaks and overflow counts.
  - `stats(major, minor)` returns the latest `DeviceStats`.
  - Partitions that only have the short field layout report `None` for time and queue figures.
- `statsagent.settings` holds the agent's configuration.
  - `Settings` holds the defaults. `Settings.validate()` raises `SettingError` on the first bad value. `Settings.reload_params()` lists the parameters passed on reload as name/text pairs.
  - Log levels:
    - `LogLevel` is the set of levels.
    - `parse_log_level` turns a level name into a level.
    - `is_log_level_output` tests a level against a threshold; in this test LOG sorts between ERROR and FATAL.
  - Validators: `verify_log_filename`, `verify_timestr`, `check_textlog_filename`, `check_enable_maintenance` and `check_maintenance_time`.
  - Helpers: `split_identifier_string`, `adjust_log_destination`, `get_archive_path` and `is_shared_preload`.
- `statsagent.activity` provides `ActivitySampler`.
  - `sample(backends, now, my_pid)` takes a list of `Backend` snapshots. It counts idle, idle-in-transaction, waiting and running client backends, and records transactions that have been open for at least a second.
  - `activity()` returns an `ActivitySummary` of the sums and starts the counts over.
  - `long_transactions()` returns the longest `LongTransaction` records, up to `long_transaction_max`, and forgets them.

## Example

```python
from statsagent.procstats import parse_loadavg
from statsagent.diskstats import DiskStatsCollector

print(parse_loadavg("0.50 0.25 0.10 1/100 1234\n"))

collector = DiskStatsCollector()
collector.sample("   8       0 sda 10 0 100 5 20 0 200 7 0 12 12\n", now=0)
collector.sample("   8       0 sda 20 0 300 9 30 0 600 9 0 14 14\n", now=10)
report = collector.report(8, 0)
print(report.device_rsps_max, report.device_wsps_max)  # 20.0 40.0
```

## What it does not do

The package is a library of collection logic only. It does not provide:

- a command or background process;
- any way to start, stop or supervise a collector;
- a connection to a database;
- storage for snapshots or collected statistics;
- sampling of wait events.

Getting backend status out of a server, and keeping the results, is up to the caller.

## Tests

```
pip install -e .[test]
pytest
```