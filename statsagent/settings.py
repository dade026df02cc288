"""Configuration of the statistics agent and checks on its values.

Holds the agent's parameters with their defaults and allowed ranges, the
validators applied when a value is set, and helpers that parse the list
and log-related settings of the server.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Optional, Union

__all__ = [
    "GUC_PREFIX",
    "DEFAULT_MAINTENANCE_TIME",
    "RELOAD_PARAM_NAMES",
    "LogLevel",
    "SettingError",
    "Settings",
    "parse_log_level",
    "is_log_level_output",
    "verify_log_filename",
    "verify_timestr",
    "check_textlog_filename",
    "check_enable_maintenance",
    "check_maintenance_time",
    "split_identifier_string",
    "adjust_log_destination",
    "get_archive_path",
    "is_shared_preload",
]

GUC_PREFIX = "pg_statsinfo"
DEFAULT_MAINTENANCE_TIME = "00:02:00"

_INT_MAX = 2**31 - 1
_MAX_IDENTIFIER_BYTES = 63
_IDENT_SPACE = " \t\n\r\f\v"
_ARCHIVE_SPACE = " \n\r\t\v"
_TOKEN_RE = re.compile(r"[^ \n\r\t\v]+")
_LOG_FILENAME_ITEMS = ("Y", "m", "d", "H", "M", "S")
_MAINTENANCE_KEYWORDS = ("snapshot", "log", "repolog")
_TEXTLOG_RESERVED = set('/\\?*:|"<>')


class LogLevel(IntEnum):
    """Message severity levels, ordered as the server orders them."""

    DEBUG5 = 10
    DEBUG4 = 11
    DEBUG3 = 12
    DEBUG2 = 13
    DEBUG1 = 14
    LOG = 15
    LOG_SERVER_ONLY = 16
    COMMERROR = 16
    INFO = 17
    NOTICE = 18
    WARNING = 19
    WARNING_CLIENT_ONLY = 20
    ERROR = 21
    FATAL = 22
    PANIC = 23
    ALERT = 24
    DISABLE = 25


_LEVEL_OPTIONS: tuple[tuple[str, LogLevel], ...] = (
    ("debug", LogLevel.DEBUG2),
    ("log", LogLevel.LOG),
    ("info", LogLevel.INFO),
    ("notice", LogLevel.NOTICE),
    ("warning", LogLevel.WARNING),
    ("error", LogLevel.ERROR),
    ("fatal", LogLevel.FATAL),
    ("panic", LogLevel.PANIC),
    ("alert", LogLevel.ALERT),
    ("disable", LogLevel.DISABLE),
)

RELOAD_PARAM_NAMES: tuple[str, ...] = (
    "log_directory",
    "log_error_verbosity",
    "syslog_facility",
    "syslog_ident",
    *(
        f"{GUC_PREFIX}.{name}"
        for name in (
            "excluded_dbnames",
            "excluded_schemas",
            "stat_statements_max",
            "stat_statements_exclude_users",
            "repository_server",
            "sampling_interval",
            "wait_sampling_interval",
            "snapshot_interval",
            "syslog_line_prefix",
            "syslog_min_messages",
            "textlog_min_messages",
            "textlog_filename",
            "textlog_line_prefix",
            "textlog_permission",
            "repolog_min_messages",
            "repolog_buffer",
            "repolog_interval",
            "adjust_log_level",
            "adjust_log_info",
            "adjust_log_notice",
            "adjust_log_warning",
            "adjust_log_error",
            "adjust_log_log",
            "adjust_log_fatal",
            "textlog_nologging_users",
            "repolog_nologging_users",
            "enable_maintenance",
            "maintenance_time",
            "repository_keepday",
            "repolog_keepday",
            "log_maintenance_command",
            "controlfile_fsync_interval",
            "enable_alert",
            "target_server",
            "wait_sampling_queries",
            "wait_sampling_save",
            "collect_column",
            "collect_index",
            "rusage_save",
            "rusage_track",
            "rusage_track_planning",
            "rusage_track_utility",
        )
    ),
)

_INT_RANGES: dict[str, tuple[int, int]] = {
    "textlog_permission": (0o000, 0o666),
    "sampling_interval": (1, _INT_MAX),
    "wait_sampling_interval": (1, _INT_MAX),
    "snapshot_interval": (1, _INT_MAX),
    "repository_keepday": (1, 3650),
    "repolog_keepday": (1, 3650),
    "long_lock_threshold": (0, _INT_MAX),
    "stat_statements_max": (0, _INT_MAX),
    "controlfile_fsync_interval": (-1, _INT_MAX),
    "repolog_buffer": (1, _INT_MAX),
    "repolog_interval": (0, 60),
    "long_transaction_max": (1, _INT_MAX),
    "wait_sampling_max": (1, _INT_MAX),
    "rusage_max": (100, _INT_MAX),
}

_LEVEL_FIELDS = ("syslog_min_messages", "textlog_min_messages", "repolog_min_messages")


class SettingError(ValueError):
    """A setting has a value that is not accepted."""

    def __init__(self, detail: str, hint: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.hint = hint


def parse_log_level(name: str) -> LogLevel:
    """Return the level for one of the accepted level names (case-insensitive)."""
    lowered = name.lower()
    for option, level in _LEVEL_OPTIONS:
        if option == lowered:
            return level
    raise SettingError(f'invalid value for log level: "{name}"')


def _level_name(level: LogLevel) -> str:
    for option, value in _LEVEL_OPTIONS:
        if value == level:
            return option
    raise SettingError(f"no name for log level {int(level)}")


def is_log_level_output(elevel: int, log_min_level: int) -> bool:
    """Whether a message of ``elevel`` passes a ``log_min_level`` threshold.

    LOG sorts between ERROR and FATAL here, as it does for the server log.
    """
    if elevel in (LogLevel.LOG, LogLevel.COMMERROR):
        return log_min_level == LogLevel.LOG or log_min_level <= LogLevel.ERROR
    if log_min_level == LogLevel.LOG:
        return elevel >= LogLevel.FATAL
    return elevel >= log_min_level


def verify_log_filename(filename: str) -> bool:
    """Check the name holds %Y, %m, %d, %H, %M and %S in this order."""
    pos = 0
    index = 0
    while index < len(_LOG_FILENAME_ITEMS):
        percent = filename.find("%", pos)
        if percent < 0:
            return False
        following = filename[percent + 1 : percent + 2]
        if following == "%":
            pos = percent + 2
        elif following == _LOG_FILENAME_ITEMS[index]:
            pos = percent + 2
            index += 1
        else:
            return False
    return True


def _is_digit(char: str) -> bool:
    return "0" <= char <= "9"


def verify_timestr(timestr: str) -> bool:
    """Check a time of day written as HH:MM:SS."""
    if len(timestr) != 8:
        return False
    hour, minute, second = timestr[0:2], timestr[3:5], timestr[6:8]
    if timestr[2] != ":" or timestr[5] != ":":
        return False
    if not all(_is_digit(c) for c in hour + minute + second):
        return False
    if hour[0] > "2" or (hour[0] == "2" and hour[1] > "3"):
        return False
    return minute[0] <= "5" and second[0] <= "5"


def check_textlog_filename(value: str) -> None:
    """Reject an empty text log file name or one with reserved characters."""
    if not value:
        raise SettingError(f"{GUC_PREFIX}.textlog_filename must not be empty")
    if any(char in _TEXTLOG_RESERVED for char in value):
        raise SettingError(
            f"{GUC_PREFIX}.textlog_filename must not contain reserved characters: {value}"
        )


def _parse_bool(value: str) -> Optional[bool]:
    if not value:
        return None
    lowered = value.lower()
    first = lowered[0]
    if first == "t":
        return True if "true".startswith(lowered) else None
    if first == "f":
        return False if "false".startswith(lowered) else None
    if first == "y":
        return True if "yes".startswith(lowered) else None
    if first == "n":
        return False if "no".startswith(lowered) else None
    if first == "o":
        if lowered == "on":
            return True
        if lowered in ("of", "off"):
            return False
        return None
    if lowered == "1":
        return True
    if lowered == "0":
        return False
    return None


def check_enable_maintenance(value: str) -> None:
    """Accept a boolean or a list of snapshot, log and repolog."""
    if _parse_bool(value) is not None:
        return
    ok, names = _split_identifiers(value, ",")
    if not ok:
        raise SettingError(f"{GUC_PREFIX}.enable_maintenance list syntax is invalid")
    for name in names:
        if name.lower() not in _MAINTENANCE_KEYWORDS:
            raise SettingError(
                f'{GUC_PREFIX}.enable_maintenance unrecognized keyword: "{name}"'
            )


def check_maintenance_time(value: str) -> None:
    """Reject an empty maintenance time or one not written as HH:MM:SS."""
    if not value:
        raise SettingError(
            f"{GUC_PREFIX}.maintenance_time must not be empty, "
            f'use default ("{DEFAULT_MAINTENANCE_TIME}")'
        )
    if not verify_timestr(value):
        raise SettingError(
            f"{GUC_PREFIX}.maintenance_time invalid syntax for time: {value}, "
            f'use default ("{DEFAULT_MAINTENANCE_TIME}")',
            hint="format should be [hh:mm:ss]",
        )


def _truncate_identifier(name: str) -> str:
    encoded = name.encode("utf-8")
    if len(encoded) <= _MAX_IDENTIFIER_BYTES:
        return name
    return encoded[:_MAX_IDENTIFIER_BYTES].decode("utf-8", errors="ignore")


def _downcase(name: str) -> str:
    return "".join(c.lower() if "A" <= c <= "Z" else c for c in name)


def _split_identifiers(raw: str, separator: str) -> tuple[bool, list[str]]:
    """Split a list of identifiers; also returns the names read before an error."""
    names: list[str] = []
    length = len(raw)
    pos = 0
    while pos < length and raw[pos] in _IDENT_SPACE:
        pos += 1
    if pos == length:
        return True, names
    while True:
        if raw[pos] == '"':
            parts: list[str] = []
            pos += 1
            while True:
                close = raw.find('"', pos)
                if close < 0:
                    return False, names
                parts.append(raw[pos:close])
                if raw[close + 1 : close + 2] == '"':
                    parts.append('"')
                    pos = close + 2
                    continue
                pos = close + 1
                break
            name = "".join(parts)
            if not name:
                return False, names
            name = _truncate_identifier(name)
        else:
            start = pos
            while pos < length and raw[pos] != separator and raw[pos] not in _IDENT_SPACE:
                pos += 1
            if pos == start:
                return False, names
            name = _truncate_identifier(_downcase(raw[start:pos]))
        while pos < length and raw[pos] in _IDENT_SPACE:
            pos += 1
        if pos < length and raw[pos] == separator:
            pos += 1
            while pos < length and raw[pos] in _IDENT_SPACE:
                pos += 1
            names.append(name)
            if pos == length:
                return False, names
            continue
        if pos == length:
            names.append(name)
            return True, names
        return False, names


def split_identifier_string(raw: str, separator: str = ",") -> list[str]:
    """Split a separated list of identifiers, lower-casing unquoted ones.

    Double-quoted identifiers keep their case and may hold doubled quotes.
    Raises SettingError on invalid list syntax.
    """
    ok, names = _split_identifiers(raw, separator)
    if not ok:
        raise SettingError(f"invalid list syntax: {raw}")
    return names


def adjust_log_destination(value: str) -> str:
    """Return the log destination with stderr removed and csvlog always first."""
    destinations = ["csvlog"]
    ok, names = _split_identifiers(value, ",")
    if ok:
        destinations.extend(
            name for name in names if name.lower() not in ("stderr", "csvlog")
        )
    return ",".join(destinations)


def get_archive_path(archive_command: Optional[str]) -> Optional[str]:
    """Guess the archive directory from the word of the command holding %f.

    Returns None when there is no such word or it is not an absolute path.
    """
    if not archive_command:
        return None
    for match in _TOKEN_RE.finditer(archive_command):
        token = match.group()
        fname = token.find("%f")
        if fname < 0:
            continue
        begin = 0
        while begin < len(token) and token[begin] in "\"'":
            begin += 1
        cut = fname - 1
        while cut > begin and token[cut - 1] in _ARCHIVE_SPACE + "\"'/":
            cut -= 1
        path = token[begin:] if cut < begin else token[begin:cut]
        return path if path.startswith("/") else None
    return None


def is_shared_preload(libraries: Optional[str], library: str) -> bool:
    """Whether ``library`` appears in a shared_preload_libraries value."""
    if not libraries:
        return False
    _, names = _split_identifiers(libraries, ",")
    return library in names


@dataclass
class Settings:
    """The agent's parameters with their defaults."""

    port: str = "5432"
    bin_path: str = ""
    log_filename: str = "postgresql-%Y-%m-%d_%H%M%S.log"
    log_directory: str = "log"
    log_error_verbosity: str = "default"
    syslog_facility: str = "local0"
    syslog_ident: str = "postgres"
    excluded_dbnames: str = "template0, template1"
    excluded_schemas: str = "pg_catalog,pg_toast,information_schema"
    repository_server: Optional[str] = None
    sampling_interval: int = 5
    wait_sampling_interval: int = 10
    snapshot_interval: int = 600
    syslog_line_prefix: str = "%t %p "
    syslog_min_messages: Union[LogLevel, str] = LogLevel.DISABLE
    textlog_filename: str = "pg_statsinfo.log"
    textlog_line_prefix: str = "%t %p "
    textlog_min_messages: Union[LogLevel, str] = LogLevel.WARNING
    textlog_permission: int = 0o600
    repolog_min_messages: Union[LogLevel, str] = LogLevel.WARNING
    repolog_buffer: int = 10000
    repolog_interval: int = 10
    adjust_log_level: bool = False
    adjust_log_info: str = ""
    adjust_log_notice: str = ""
    adjust_log_warning: str = ""
    adjust_log_error: str = ""
    adjust_log_log: str = ""
    adjust_log_fatal: str = ""
    textlog_nologging_users: str = ""
    repolog_nologging_users: str = ""
    enable_maintenance: str = "on"
    maintenance_time: str = DEFAULT_MAINTENANCE_TIME
    repository_keepday: int = 7
    repolog_keepday: int = 7
    log_maintenance_command: Optional[str] = None
    long_lock_threshold: int = 30
    stat_statements_max: int = 30
    stat_statements_exclude_users: str = ""
    long_transaction_max: int = 10
    controlfile_fsync_interval: int = 60
    enable_alert: bool = False
    target_server: str = ""
    wait_sampling_queries: bool = True
    wait_sampling_max: int = 25000
    wait_sampling_save: bool = True
    collect_column: bool = True
    collect_index: bool = True
    rusage_max: int = 5000
    rusage_save: bool = True
    rusage_track: str = "top"
    rusage_track_planning: bool = False
    rusage_track_utility: bool = False

    def __post_init__(self) -> None:
        if self.repository_server is None:
            self.repository_server = f"dbname=postgres port={self.port}"
        if self.log_maintenance_command is None:
            self.log_maintenance_command = f"{self.bin_path}/archive_pglog.sh %l"
        for name in _LEVEL_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, parse_log_level(value))

    def validate(self) -> None:
        """Raise SettingError for the first value that is not accepted."""
        for name, (low, high) in _INT_RANGES.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
                raise SettingError(
                    f'{value} is outside the valid range for parameter '
                    f'"{GUC_PREFIX}.{name}" ({low} .. {high})'
                )
        allowed = {level for _, level in _LEVEL_OPTIONS}
        for name in _LEVEL_FIELDS:
            if getattr(self, name) not in allowed:
                raise SettingError(
                    f'invalid value for parameter "{GUC_PREFIX}.{name}": {getattr(self, name)}'
                )
        check_textlog_filename(self.textlog_filename)
        check_enable_maintenance(self.enable_maintenance)
        check_maintenance_time(self.maintenance_time)
        if not verify_log_filename(self.log_filename):
            raise SettingError(
                f"unsupported log_filename: {self.log_filename}",
                hint="must have %Y, %m, %d, %H, %M, and %S in this order",
            )

    def reload_params(self) -> list[tuple[str, str]]:
        """Return the parameters passed on reload, as name and text value pairs."""
        known = {f.name for f in fields(self)}
        params: list[tuple[str, str]] = []
        for full_name in RELOAD_PARAM_NAMES:
            attribute = full_name.split(".", 1)[1] if "." in full_name else full_name
            if attribute not in known:
                raise SettingError(f'unrecognized configuration parameter "{full_name}"')
            params.append((full_name, _format_value(getattr(self, attribute))))
        return params


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, LogLevel):
        return _level_name(value)
    if value is None:
        return ""
    return str(value)