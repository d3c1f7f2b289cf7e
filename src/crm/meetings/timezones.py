"""Timezone resolution and the catalog offered by the meeting form.

IANA names resolve through ``zoneinfo``; fixed-offset labels in the
``UTC+05:30`` form are also accepted because older meeting records were
converted with them. Anything else is an input error.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from src.crm.meetings.schemas import TimezoneOption

logger = structlog.get_logger(__name__)

_OFFSET_LABEL = re.compile(r"^UTC([+-])(\d{1,2}):(\d{2})$")


class UnknownTimezoneError(ValueError):
    """Raised when a timezone identifier cannot be resolved."""

    def __init__(self, name: object) -> None:
        self.name = name
        super().__init__(f"Unknown timezone: {name!r}")


MAJOR_TIMEZONES: list[TimezoneOption] = [
    TimezoneOption(value="Pacific/Midway", label="(-11:00 hours) Samoa Standard Time", offset="-11:00"),
    TimezoneOption(value="Pacific/Honolulu", label="(-10:00 hours) Hawaii Standard Time", offset="-10:00"),
    TimezoneOption(value="America/Anchorage", label="(-09:00 hours) Alaska Standard Time", offset="-09:00"),
    TimezoneOption(value="America/Los_Angeles", label="(-08:00 hours) Pacific Standard Time", offset="-08:00"),
    TimezoneOption(value="America/Denver", label="(-07:00 hours) Mountain Standard Time", offset="-07:00"),
    TimezoneOption(value="America/Chicago", label="(-06:00 hours) Central Standard Time", offset="-06:00"),
    TimezoneOption(value="America/New_York", label="(-05:00 hours) Eastern Standard Time", offset="-05:00"),
    TimezoneOption(value="America/Caracas", label="(-04:00 hours) Venezuela Time", offset="-04:00"),
    TimezoneOption(value="America/Sao_Paulo", label="(-03:00 hours) Brasilia Time", offset="-03:00"),
    TimezoneOption(value="Atlantic/South_Georgia", label="(-02:00 hours) South Georgia Time", offset="-02:00"),
    TimezoneOption(value="Atlantic/Azores", label="(-01:00 hours) Azores Time", offset="-01:00"),
    TimezoneOption(value="UTC", label="(+00:00 hours) Coordinated Universal Time", offset="+00:00"),
    TimezoneOption(value="Europe/London", label="(+00:00 hours) Greenwich Mean Time", offset="+00:00"),
    TimezoneOption(value="Europe/Berlin", label="(+01:00 hours) Central European Time", offset="+01:00"),
    TimezoneOption(value="Europe/Paris", label="(+01:00 hours) Central European Time", offset="+01:00"),
    TimezoneOption(value="Europe/Athens", label="(+02:00 hours) Eastern European Time", offset="+02:00"),
    TimezoneOption(value="Africa/Cairo", label="(+02:00 hours) Egypt Standard Time", offset="+02:00"),
    TimezoneOption(value="Europe/Moscow", label="(+03:00 hours) Moscow Standard Time", offset="+03:00"),
    TimezoneOption(value="Asia/Dubai", label="(+04:00 hours) Gulf Standard Time", offset="+04:00"),
    TimezoneOption(value="Asia/Kolkata", label="(+05:30 hours) India Standard Time", offset="+05:30"),
    TimezoneOption(value="Asia/Dhaka", label="(+06:00 hours) Bangladesh Standard Time", offset="+06:00"),
    TimezoneOption(value="Asia/Bangkok", label="(+07:00 hours) Indochina Time", offset="+07:00"),
    TimezoneOption(value="Asia/Shanghai", label="(+08:00 hours) China Standard Time", offset="+08:00"),
    TimezoneOption(value="Asia/Tokyo", label="(+09:00 hours) Japan Standard Time", offset="+09:00"),
    TimezoneOption(value="Australia/Sydney", label="(+10:00 hours) Australian Eastern Time", offset="+10:00"),
    TimezoneOption(value="Pacific/Auckland", label="(+12:00 hours) New Zealand Standard Time", offset="+12:00"),
]


def resolve_timezone(name: str) -> tzinfo:
    """Resolve an IANA name or a ``UTC±HH:MM`` label to a tzinfo.

    Raises:
        UnknownTimezoneError: If the identifier is not a non-empty string, is
            malformed, or is not present in the tz database.
    """
    if not isinstance(name, str) or not name.strip():
        raise UnknownTimezoneError(name)
    return _resolve_timezone(name.strip())


@lru_cache(maxsize=256)
def _resolve_timezone(candidate: str) -> tzinfo:
    match = _OFFSET_LABEL.match(candidate)
    if match:
        sign = 1 if match.group(1) == "+" else -1
        hours, minutes = int(match.group(2)), int(match.group(3))
        if hours > 14 or minutes >= 60:
            raise UnknownTimezoneError(candidate)
        return timezone(sign * timedelta(hours=hours, minutes=minutes), candidate)

    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise UnknownTimezoneError(candidate) from exc


def is_valid_timezone(name: str) -> bool:
    try:
        resolve_timezone(name)
    except UnknownTimezoneError:
        return False
    return True


def _offset_minutes(option: TimezoneOption) -> int:
    sign = -1 if option.offset.startswith("-") else 1
    hours, minutes = option.offset.lstrip("+-").split(":")
    return sign * (int(hours) * 60 + int(minutes))


def match_user_timezone(name: str | None, now: datetime | None = None) -> str:
    """Map a viewer's timezone onto the catalog.

    Returns ``name`` when it is a catalog entry, otherwise the catalog entry
    whose standard offset is closest to ``name``'s offset at ``now``, and
    ``UTC`` when ``name`` cannot be resolved at all.
    """
    if name and any(option.value == name for option in MAJOR_TIMEZONES):
        return name

    try:
        tz = resolve_timezone(name or "")
    except UnknownTimezoneError:
        logger.warning("Unresolvable viewer timezone, using UTC", timezone=name)
        return "UTC"

    moment = (now or datetime.now(timezone.utc)).astimezone(tz)
    offset = moment.utcoffset() or timedelta(0)
    user_minutes = int(offset.total_seconds() // 60)

    closest = min(MAJOR_TIMEZONES, key=lambda option: abs(_offset_minutes(option) - user_minutes))
    return closest.value
