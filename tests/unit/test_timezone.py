import re
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core import timezone as tz
from app.core.timezone import (
    COMMON_TIMEZONES,
    DEFAULT_TIMEZONE,
    FALLBACK_TIMEZONE,
    coerce_timezone,
    detect_local_timezone,
    is_due_for_reset,
    local_date_in,
    local_midnight_in,
    next_local_midnight_in,
    timezone_offset_hours,
    validate_timezone_format,
)

SPRING_FORWARD = datetime(2024, 3, 10, 5, 30, tzinfo=timezone.utc)


def test_default_timezone_falls_back_to_new_york() -> None:
    assert FALLBACK_TIMEZONE == "America/New_York"
    assert validate_timezone_format(DEFAULT_TIMEZONE)


@pytest.mark.parametrize("zone", [item["value"] for item in COMMON_TIMEZONES])
def test_local_date_is_zero_padded_iso(zone: str) -> None:
    assert re.match(r"^\d{4}-\d{2}-\d{2}$", local_date_in(zone))


def test_local_date_uses_real_offsets_on_dst_day() -> None:
    assert local_date_in("America/New_York", SPRING_FORWARD) == "2024-03-10"
    assert local_date_in("Asia/Tokyo", SPRING_FORWARD) == "2024-03-10"


def test_local_date_differs_across_zones_near_boundary() -> None:
    instant = datetime(2024, 3, 10, 15, 30, tzinfo=timezone.utc)
    assert local_date_in("America/New_York", instant) == "2024-03-10"
    assert local_date_in("Asia/Tokyo", instant) == "2024-03-11"


def test_naive_instants_are_treated_as_utc() -> None:
    assert local_date_in("Asia/Tokyo", datetime(2024, 3, 10, 15, 30)) == "2024-03-11"


@pytest.mark.parametrize("bad", ["garbage", "", None, "Mars/Olympus", "../etc/passwd"])
def test_unrecognized_timezones_degrade_to_default(bad) -> None:
    assert local_date_in(bad, SPRING_FORWARD) == local_date_in(DEFAULT_TIMEZONE, SPRING_FORWARD)
    assert coerce_timezone(bad) == DEFAULT_TIMEZONE


def test_validate_timezone_format() -> None:
    assert validate_timezone_format("garbage") is False
    assert validate_timezone_format("America/New_York") is True
    assert validate_timezone_format("a/") is False
    assert validate_timezone_format("") is False
    assert validate_timezone_format(None) is False
    assert validate_timezone_format(42) is False
    # Syntactic only: unknown zones with a separator still pass.
    assert validate_timezone_format("Mars/Olympus") is True


def test_is_due_for_reset_without_prior_record() -> None:
    assert is_due_for_reset(None, "America/New_York") is True
    assert is_due_for_reset("", "Asia/Tokyo") is True


def test_is_due_for_reset_same_day_is_false() -> None:
    now = datetime.now(timezone.utc)
    assert is_due_for_reset(local_date_in("America/New_York", now), "America/New_York", now) is False


def test_is_due_for_reset_old_date() -> None:
    assert is_due_for_reset("2020-01-01", "America/New_York", SPRING_FORWARD) is True


def test_is_due_for_reset_flips_at_local_midnight() -> None:
    just_before = datetime(2024, 7, 2, 3, 59, 59, tzinfo=timezone.utc)
    at_midnight = datetime(2024, 7, 2, 4, 0, 0, tzinfo=timezone.utc)
    assert is_due_for_reset("2024-07-01", "America/New_York", just_before) is False
    assert is_due_for_reset("2024-07-01", "America/New_York", at_midnight) is True


def test_local_midnight_in_summer() -> None:
    midnight = local_midnight_in("America/New_York", datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc))
    assert midnight == datetime(2024, 7, 1, 4, 0, tzinfo=timezone.utc)
    assert (midnight.hour, midnight.minute, midnight.second) == (0, 0, 0)


def test_local_midnight_on_spring_forward_day_uses_pre_transition_offset() -> None:
    midnight = local_midnight_in("America/New_York", SPRING_FORWARD)
    assert midnight == datetime(2024, 3, 10, 5, 0, tzinfo=timezone.utc)


def test_local_midnight_is_first_instant_of_local_day() -> None:
    zone = ZoneInfo("America/Santiago")
    now = datetime(2024, 9, 8, 12, 0, tzinfo=timezone.utc)
    start = local_midnight_in("America/Santiago", now)
    assert start.astimezone(zone).date() == date(2024, 9, 8)
    assert (start - timedelta(seconds=1)).astimezone(zone).date() == date(2024, 9, 7)


def test_next_local_midnight_follows_current_one() -> None:
    now = datetime(2024, 11, 2, 12, 0, tzinfo=timezone.utc)
    start = local_midnight_in("America/New_York", now)
    following = next_local_midnight_in("America/New_York", now)
    assert start < now < following
    # The next local day is 25 hours long because of the fall-back transition.
    assert following == datetime(2024, 11, 3, 4, 0, tzinfo=timezone.utc)
    assert next_local_midnight_in("America/New_York", following) - following == timedelta(hours=25)


def test_timezone_offset_hours_tracks_dst() -> None:
    assert timezone_offset_hours("America/New_York", datetime(2024, 1, 15, tzinfo=timezone.utc)) == -5.0
    assert timezone_offset_hours("America/New_York", datetime(2024, 7, 15, tzinfo=timezone.utc)) == -4.0
    assert timezone_offset_hours("Asia/Kolkata", SPRING_FORWARD) == 5.5


def test_detect_local_timezone_reads_tz_env(monkeypatch) -> None:
    monkeypatch.setenv("TZ", "Europe/Paris")
    assert detect_local_timezone() == "Europe/Paris"


@pytest.fixture
def no_host_zone(monkeypatch, tmp_path):
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr(tz, "LOCALTIME_PATH", str(tmp_path / "missing"))
    monkeypatch.setattr(tz, "_system_zone_key", lambda: None)


def test_detect_local_timezone_rejects_non_iana_env(monkeypatch, no_host_zone) -> None:
    monkeypatch.setenv("TZ", "garbage")
    assert detect_local_timezone() == DEFAULT_TIMEZONE


def test_detect_local_timezone_survives_runtime_failure(monkeypatch) -> None:
    def _broken() -> str:
        raise RuntimeError("calendar facility unavailable")

    monkeypatch.setattr(tz, "_runtime_timezone_name", _broken)
    assert detect_local_timezone() == DEFAULT_TIMEZONE


def test_detect_local_timezone_without_any_source(no_host_zone) -> None:
    assert detect_local_timezone() == DEFAULT_TIMEZONE


def test_detect_local_timezone_reads_localtime_link(monkeypatch, tmp_path) -> None:
    link = tmp_path / "localtime"
    link.symlink_to("/usr/share/zoneinfo/Asia/Tokyo")
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr(tz, "LOCALTIME_PATH", str(link))
    assert detect_local_timezone() == "Asia/Tokyo"


def test_detect_local_timezone_skips_bad_env_for_localtime_link(monkeypatch, tmp_path) -> None:
    link = tmp_path / "localtime"
    link.symlink_to("/usr/share/zoneinfo/Asia/Tokyo")
    monkeypatch.setenv("TZ", "garbage")
    monkeypatch.setattr(tz, "LOCALTIME_PATH", str(link))
    assert detect_local_timezone() == "Asia/Tokyo"


class _ZonedClock:
    """Stands in for ``datetime`` on a host whose local zone is a ZoneInfo."""

    def __init__(self, zone) -> None:
        self.zone = zone

    def now(self, tz=None):
        clock = self

        class _Local:
            def astimezone(self):
                return datetime(2024, 6, 1, 12, 0, tzinfo=clock.zone)

        return _Local()


def test_detect_local_timezone_falls_back_to_system_zone(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("TZ", "garbage")
    monkeypatch.setattr(tz, "LOCALTIME_PATH", str(tmp_path / "missing"))
    monkeypatch.setattr(tz, "datetime", _ZonedClock(ZoneInfo("Europe/Berlin")))
    assert detect_local_timezone() == "Europe/Berlin"


def test_system_zone_without_iana_key_is_ignored(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr(tz, "LOCALTIME_PATH", str(tmp_path / "missing"))
    monkeypatch.setattr(tz, "datetime", _ZonedClock(timezone(timedelta(hours=2))))
    assert detect_local_timezone() == DEFAULT_TIMEZONE


def test_configured_default_ignores_unknown_zone(monkeypatch) -> None:
    monkeypatch.setenv("DEFAULT_TIMEZONE", "garbage")
    assert tz._configured_default() == "America/New_York"
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Mars/Olympus")
    assert tz._configured_default() == "America/New_York"


def test_configured_default_accepts_known_zone(monkeypatch) -> None:
    monkeypatch.setenv("DEFAULT_TIMEZONE", " Europe/Paris ")
    assert tz._configured_default() == "Europe/Paris"
