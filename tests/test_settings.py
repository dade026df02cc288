import pytest

from statsagent.settings import (
    DEFAULT_MAINTENANCE_TIME,
    RELOAD_PARAM_NAMES,
    LogLevel,
    SettingError,
    Settings,
    adjust_log_destination,
    check_enable_maintenance,
    check_maintenance_time,
    check_textlog_filename,
    get_archive_path,
    is_log_level_output,
    is_shared_preload,
    parse_log_level,
    split_identifier_string,
    verify_log_filename,
    verify_timestr,
)


@pytest.mark.parametrize(
    "name, level",
    [
        ("debug", LogLevel.DEBUG2),
        ("LOG", LogLevel.LOG),
        ("Warning", LogLevel.WARNING),
        ("disable", LogLevel.DISABLE),
        ("alert", LogLevel.ALERT),
    ],
)
def test_parse_log_level(name, level):
    assert parse_log_level(name) is level


def test_parse_log_level_rejects_unknown():
    with pytest.raises(SettingError):
        parse_log_level("debug5")


def test_log_level_output_log_sorts_between_error_and_fatal():
    assert is_log_level_output(LogLevel.LOG, LogLevel.ERROR)
    assert not is_log_level_output(LogLevel.LOG, LogLevel.FATAL)
    assert is_log_level_output(LogLevel.FATAL, LogLevel.LOG)
    assert not is_log_level_output(LogLevel.ERROR, LogLevel.LOG)
    assert is_log_level_output(LogLevel.LOG, LogLevel.LOG)


def test_log_level_output_plain_ordering():
    assert is_log_level_output(LogLevel.ERROR, LogLevel.WARNING)
    assert not is_log_level_output(LogLevel.NOTICE, LogLevel.WARNING)
    assert not is_log_level_output(LogLevel.PANIC, LogLevel.DISABLE)


@pytest.mark.parametrize(
    "filename, ok",
    [
        ("postgresql-%Y-%m-%d_%H%M%S.log", True),
        ("%%x-%Y%m%d%H%M%S", True),
        ("postgresql-%Y-%m-%d.log", False),
        ("%m%Y%d%H%M%S", False),
        ("plain.log", False),
        ("%Y%m%d%H%M%", False),
    ],
)
def test_verify_log_filename(filename, ok):
    assert verify_log_filename(filename) is ok


@pytest.mark.parametrize(
    "timestr, ok",
    [
        (DEFAULT_MAINTENANCE_TIME, True),
        ("23:59:59", True),
        ("24:00:00", False),
        ("12:60:00", False),
        ("12:00:60", False),
        ("1:00:00", False),
        ("12-00-00", False),
        ("ab:cd:ef", False),
    ],
)
def test_verify_timestr(timestr, ok):
    assert verify_timestr(timestr) is ok


def test_check_textlog_filename():
    check_textlog_filename("pg_statsinfo.log")
    with pytest.raises(SettingError):
        check_textlog_filename("")
    with pytest.raises(SettingError):
        check_textlog_filename("dir/file.log")
    with pytest.raises(SettingError):
        check_textlog_filename("a:b")


@pytest.mark.parametrize("value", ["on", "off", "true", "1", "snapshot", "snapshot, log", "LOG,repolog", ""])
def test_check_enable_maintenance_accepts(value):
    assert check_enable_maintenance(value) is None


@pytest.mark.parametrize("value", ["o", "weekly", "snapshot,,log", "snapshot backup"])
def test_check_enable_maintenance_rejects(value):
    with pytest.raises(SettingError):
        check_enable_maintenance(value)


def test_check_maintenance_time():
    check_maintenance_time("01:30:00")
    with pytest.raises(SettingError):
        check_maintenance_time("")
    with pytest.raises(SettingError) as info:
        check_maintenance_time("25:00:00")
    assert info.value.hint == "format should be [hh:mm:ss]"


def test_split_identifier_string():
    assert split_identifier_string('a, "B""c" , D') == ["a", 'B"c', "d"]
    assert split_identifier_string("   ") == []
    assert split_identifier_string("x;Y", ";") == ["x", "y"]


@pytest.mark.parametrize("raw", ["a,,b", '"abc', "a b", "a,", '""'])
def test_split_identifier_string_errors(raw):
    with pytest.raises(SettingError):
        split_identifier_string(raw)


def test_split_identifier_truncates_long_names():
    names = split_identifier_string("x" * 100)
    assert len(names[0]) == 63


def test_adjust_log_destination():
    assert adjust_log_destination("stderr") == "csvlog"
    assert adjust_log_destination("stderr,syslog") == "csvlog,syslog"
    assert adjust_log_destination("CSVLOG, syslog") == "csvlog,syslog"


def test_adjust_log_destination_bad_list_keeps_csvlog_only():
    assert adjust_log_destination("syslog,,") == "csvlog"


def test_get_archive_path():
    assert get_archive_path('cp "%p" /path/to/arclog/"%f"') == "/path/to/arclog"
    assert get_archive_path("cp %p /archive/%f") == "/archive"
    assert get_archive_path("cp %p archive/%f") is None
    assert get_archive_path("") is None
    assert get_archive_path(None) is None
    assert get_archive_path("/bin/true") is None


def test_is_shared_preload():
    assert is_shared_preload("pg_statsinfo, pg_stat_statements", "pg_statsinfo")
    assert is_shared_preload("PG_STATSINFO", "pg_statsinfo")
    assert not is_shared_preload("pg_stat_statements", "pg_statsinfo")
    assert not is_shared_preload("", "pg_statsinfo")


def test_settings_defaults_validate():
    settings = Settings(port="6543", bin_path="/opt/pg/bin")
    settings.validate()
    assert settings.repository_server == "dbname=postgres port=6543"
    assert settings.log_maintenance_command == "/opt/pg/bin/archive_pglog.sh %l"


def test_settings_level_from_string():
    settings = Settings(textlog_min_messages="error")
    assert settings.textlog_min_messages is LogLevel.ERROR


@pytest.mark.parametrize(
    "overrides",
    [
        {"sampling_interval": 0},
        {"repolog_interval": 61},
        {"repository_keepday": 3651},
        {"controlfile_fsync_interval": -2},
        {"rusage_max": 99},
        {"textlog_permission": 0o777},
        {"textlog_filename": "a/b"},
        {"maintenance_time": "3am"},
        {"enable_maintenance": "weekly"},
        {"log_filename": "postgresql.log"},
        {"syslog_min_messages": LogLevel.DEBUG5},
    ],
)
def test_settings_validate_rejects(overrides):
    with pytest.raises(SettingError):
        Settings(**overrides).validate()


def test_reload_params_order_and_values():
    settings = Settings()
    params = settings.reload_params()
    assert [name for name, _ in params] == list(RELOAD_PARAM_NAMES)
    values = dict(params)
    assert values["pg_statsinfo.maintenance_time"] == DEFAULT_MAINTENANCE_TIME
    assert values["pg_statsinfo.excluded_dbnames"] == "template0, template1"
    assert values["pg_statsinfo.syslog_min_messages"] == "disable"
    assert values["pg_statsinfo.textlog_min_messages"] == "warning"
    assert values["pg_statsinfo.adjust_log_level"] == "off"
    assert values["pg_statsinfo.collect_column"] == "on"
    assert values["pg_statsinfo.textlog_permission"] == str(settings.textlog_permission)
    assert values["pg_statsinfo.repository_server"] == settings.repository_server


def test_reload_params_debug_level_name():
    values = dict(Settings(repolog_min_messages=LogLevel.DEBUG2).reload_params())
    assert values["pg_statsinfo.repolog_min_messages"] == "debug"