"""Timezone-aware day boundaries.

Everything here answers "what day is it for this user" from an IANA zone
name. All functions are total: a zone the tz database cannot load is
replaced by ``DEFAULT_TIMEZONE`` before any date math runs.
"""

import logging
import os
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("uvicorn.error")

FALLBACK_TIMEZONE = "America/New_York"
LOCALTIME_PATH = "/etc/localtime"

COMMON_TIMEZONES: list[dict[str, str]] = [
    {"value": "America/New_York", "label": "Eastern Time (ET)"},
    {"value": "America/Chicago", "label": "Central Time (CT)"},
    {"value": "America/Denver", "label": "Mountain Time (MT)"},
    {"value": "America/Los_Angeles", "label": "Pacific Time (PT)"},
    {"value": "America/Anchorage", "label": "Alaska Time (AKT)"},
    {"value": "Pacific/Honolulu", "label": "Hawaii Time (HT)"},
    {"value": "Europe/London", "label": "London (GMT/BST)"},
    {"value": "Europe/Paris", "label": "Paris (CET/CEST)"},
    {"value": "Europe/Berlin", "label": "Berlin (CET/CEST)"},
    {"value": "Asia/Dubai", "label": "Dubai (GST)"},
    {"value": "Asia/Kolkata", "label": "India (IST)"},
    {"value": "Asia/Singapore", "label": "Singapore (SGT)"},
    {"value": "Asia/Tokyo", "label": "Tokyo (JST)"},
    {"value": "Australia/Sydney", "label": "Sydney (AEDT/AEST)"},
    {"value": "Pacific/Auckland", "label": "Auckland (NZDT/NZST)"},
]


def validate_timezone_format(candidate: object) -> bool:
    """Cheap syntactic check: non-empty "Region/City" style string.

    Does not consult the tz database, so "Mars/Olympus" passes.
    """
    return isinstance(candidate, str) and len(candidate) >= 3 and "/" in candidate


def is_known_timezone(candidate: object) -> bool:
    if not validate_timezone_format(candidate):
        return False
    try:
        ZoneInfo(str(candidate))
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _configured_default() -> str:
    configured = (os.getenv("DEFAULT_TIMEZONE") or "").strip()
    if configured and is_known_timezone(configured):
        return configured
    return FALLBACK_TIMEZONE


DEFAULT_TIMEZONE = _configured_default()


def coerce_timezone(candidate: Optional[str]) -> str:
    if candidate and is_known_timezone(candidate):
        return candidate
    if candidate:
        logger.warning("timezone_unrecognized value=%r fallback=%s", candidate, DEFAULT_TIMEZONE)
    return DEFAULT_TIMEZONE


def _zone(timezone_name: Optional[str]) -> ZoneInfo:
    return ZoneInfo(coerce_timezone(timezone_name))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return _utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _env_timezone_name() -> Optional[str]:
    return (os.environ.get("TZ") or "").strip().lstrip(":") or None


def _localtime_link_name() -> Optional[str]:
    link = Path(LOCALTIME_PATH)
    try:
        if not link.is_symlink():
            return None
        parts = str(link.readlink()).split("/")
    except OSError as exc:
        logger.debug("timezone_localtime_unreadable path=%s detail=%s", LOCALTIME_PATH, str(exc))
        return None
    if "zoneinfo" not in parts:
        return None
    return "/".join(parts[parts.index("zoneinfo") + 1 :])


def _system_zone_key() -> Optional[str]:
    # Usually a fixed-offset timezone, which carries no IANA key.
    local_tz = datetime.now().astimezone().tzinfo
    if isinstance(local_tz, ZoneInfo):
        return local_tz.key
    return None


def _runtime_timezone_name() -> Optional[str]:
    """First loadable zone from TZ, the /etc/localtime link, then the system clock."""
    for source in (_env_timezone_name, _localtime_link_name, _system_zone_key):
        candidate = source()
        if candidate and is_known_timezone(candidate):
            return candidate
        if candidate:
            logger.debug("timezone_candidate_skipped source=%s value=%r", source.__name__, candidate)
    return None


def detect_local_timezone() -> str:
    """Timezone of the running process, or the default when it cannot be told."""
    try:
        detected = _runtime_timezone_name()
    except Exception as exc:
        logger.warning("timezone_detect_failed detail=%s", str(exc))
        return DEFAULT_TIMEZONE
    if not detected or not is_known_timezone(detected):
        return DEFAULT_TIMEZONE
    return detected


def local_date_in(timezone_name: Optional[str], now: Optional[datetime] = None) -> str:
    """Calendar date (YYYY-MM-DD) of ``now`` in the zone, honouring DST."""
    local_now = _as_utc(now).astimezone(_zone(timezone_name))
    return local_now.date().isoformat()


def _midnight_of(day: date, zone: ZoneInfo) -> datetime:
    # A round trip through UTC moves a midnight that falls in a DST gap to the
    # first instant that exists on that day.
    candidate = datetime.combine(day, time.min, tzinfo=zone)
    return candidate.astimezone(timezone.utc).astimezone(zone)


def local_midnight_in(timezone_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Instant at which the current local day started."""
    zone = _zone(timezone_name)
    today = date.fromisoformat(local_date_in(zone.key, now))
    return _midnight_of(today, zone)


def next_local_midnight_in(timezone_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Instant of the next day boundary, i.e. when the next reset becomes due."""
    zone = _zone(timezone_name)
    today = date.fromisoformat(local_date_in(zone.key, now))
    return _midnight_of(today + timedelta(days=1), zone)


def is_due_for_reset(
    last_reset_date: Optional[str], timezone_name: Optional[str], now: Optional[datetime] = None
) -> bool:
    if not last_reset_date:
        return True
    return last_reset_date != local_date_in(timezone_name, now)


def timezone_offset_hours(timezone_name: Optional[str], now: Optional[datetime] = None) -> float:
    offset = _as_utc(now).astimezone(_zone(timezone_name)).utcoffset()
    if offset is None:
        return 0.0
    return offset.total_seconds() / 3600
