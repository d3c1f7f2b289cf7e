"""Timezone-aware meeting scheduling.

ScheduleResolver converts between a wall-clock time on a calendar date in a
named timezone and absolute UTC instants, enumerates the start-time grid of a
day while hiding slots that are already in the past, and re-validates a
chosen slot after the user changes the date or the timezone.

Offsets are always resolved for the specific date being converted, never
for the current moment, so daylight-saving changes between "now" and the
meeting date are handled.

DST handling (no operation raises for these):
- A time inside a spring-forward gap is interpreted with the offset in
  force before the gap, which moves it forward by the gap length
  (02:30 America/New_York on a spring-forward day -> 07:30Z = 03:30 EDT).
- A time repeated by a fall-back transition resolves to its first
  occurrence (the daylight-time reading).

The resolver holds no mutable state. "Now" comes from an injectable clock so
callers and tests can pin it.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.crm.meetings.schemas import (
    LocalDateTime,
    MeetingNotification,
    MeetingRequest,
    MeetingSchedule,
    ScheduledMeeting,
    UTCWindow,
)
from src.crm.meetings.timezones import resolve_timezone

if TYPE_CHECKING:
    from src.crm.config import Settings

logger = structlog.get_logger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

MINUTES_PER_DAY = 24 * 60
DEFAULT_SLOT_MINUTES = 30
DEFAULT_START_TIME = "09:00"
DEFAULT_SUGGESTION_DAYS = 7

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


# ── Errors ───────────────────────────────────────────────────────────────────


class InvalidTimeFormatError(ValueError):
    """Raised when a time string is not a valid ``HH:mm`` wall-clock time."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Invalid time format: {value!r} (expected HH:mm)")


class PastDateTimeError(ValueError):
    """Raised when a submitted meeting does not start after now."""

    def __init__(self, utc_start: datetime) -> None:
        self.utc_start = utc_start
        super().__init__(
            f"Meeting date and time cannot be in the past: {utc_start.isoformat()}"
        )


# ── Time String Helpers ──────────────────────────────────────────────────────


def parse_time(value: str) -> time:
    """Parse ``HH:mm`` (a single-digit hour is accepted).

    Raises:
        InvalidTimeFormatError: For anything else, including out-of-range values.
    """
    if not isinstance(value, str):
        raise InvalidTimeFormatError(value)
    match = _TIME_PATTERN.match(value.strip())
    if match is None:
        raise InvalidTimeFormatError(value)
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeFormatError(value)
    return time(hours, minutes)


def format_time(value: time | datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def normalize_time(value: str) -> str:
    """Canonical zero-padded form of a time string (``9:00`` -> ``09:00``)."""
    return format_time(parse_time(value))


def next_business_day(day: date) -> date:
    """The first Monday-to-Friday date strictly after ``day``."""
    candidate = day + timedelta(days=1)
    while candidate.weekday() >= 5:
        candidate += timedelta(days=1)
    return candidate


def _system_clock() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


# ── Slot Enumeration ─────────────────────────────────────────────────────────


class SlotSequence:
    """Lazy, finite, restartable sequence of ``HH:mm`` slots for one day.

    Each iteration walks the fixed grid from 00:00 in ascending order and
    applies ``keep`` at that moment, so a sequence iterated later never
    yields a slot that has since become past.
    """

    def __init__(
        self,
        interval_minutes: int = DEFAULT_SLOT_MINUTES,
        keep: Callable[[str], bool] | None = None,
    ) -> None:
        if interval_minutes <= 0 or interval_minutes > MINUTES_PER_DAY:
            raise ValueError(f"Slot interval must be within 1..{MINUTES_PER_DAY} minutes")
        self._interval = interval_minutes
        self._keep = keep

    def __iter__(self) -> Iterator[str]:
        for offset in range(0, MINUTES_PER_DAY, self._interval):
            slot = f"{offset // 60:02d}:{offset % 60:02d}"
            if self._keep is None or self._keep(slot):
                yield slot

    def __contains__(self, item: object) -> bool:
        return any(slot == item for slot in self)

    def first(self) -> str | None:
        return next(iter(self), None)


# ── Resolver ─────────────────────────────────────────────────────────────────


class ScheduleResolver:
    """Bidirectional local-time <-> UTC conversion and slot management.

    Args:
        clock: Callable returning the current instant. Defaults to the
            system clock in UTC; naive results are taken as UTC.
        slot_minutes: Granularity of the start-time grid.
        default_start: Time used when a day has no valid slot left.
        suggestion_days: How many local days ``suggest_next_available_slot``
            scans.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        slot_minutes: int = DEFAULT_SLOT_MINUTES,
        default_start: str = DEFAULT_START_TIME,
        suggestion_days: int = DEFAULT_SUGGESTION_DAYS,
    ) -> None:
        if slot_minutes <= 0 or slot_minutes > MINUTES_PER_DAY:
            raise ValueError(f"Slot interval must be within 1..{MINUTES_PER_DAY} minutes")
        self._clock = clock or _system_clock
        self._slot_minutes = slot_minutes
        self._default_start = normalize_time(default_start)
        self._suggestion_days = suggestion_days

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], datetime] | None = None
    ) -> ScheduleResolver:
        return cls(
            clock=clock,
            slot_minutes=settings.SLOT_INTERVAL_MINUTES,
            default_start=settings.DEFAULT_START_TIME,
            suggestion_days=settings.SUGGESTION_WINDOW_DAYS,
        )

    @property
    def default_start(self) -> str:
        return self._default_start

    def now(self) -> datetime:
        return _as_utc(self._clock())

    def today(self, tz_name: str) -> date:
        """The current calendar date as seen in ``tz_name``."""
        return self.now().astimezone(resolve_timezone(tz_name)).date()

    # ── Conversion ───────────────────────────────────────────────────────

    def to_utc(
        self,
        day: date,
        time_str: str,
        tz_name: str,
        duration_minutes: int = 0,
    ) -> UTCWindow:
        """Interpret ``time_str`` on ``day`` in ``tz_name`` as an absolute window.

        Raises:
            InvalidTimeFormatError: If ``time_str`` is not ``HH:mm``.
            UnknownTimezoneError: If ``tz_name`` cannot be resolved.
            ValueError: If ``duration_minutes`` is negative.
        """
        if duration_minutes < 0:
            raise ValueError(f"Duration cannot be negative: {duration_minutes}")
        tz = resolve_timezone(tz_name)
        wall_clock = parse_time(time_str)
        local = datetime.combine(day, wall_clock, tzinfo=tz)
        utc_start = local.astimezone(timezone.utc)
        return UTCWindow(
            utc_start=utc_start,
            utc_end=utc_start + timedelta(minutes=duration_minutes),
        )

    def from_utc(self, instant: datetime, tz_name: str) -> LocalDateTime:
        """Render a stored UTC instant as a wall-clock date and time in ``tz_name``.

        Editors always see times in their own current zone, so ``tz_name``
        is the viewer's timezone, not necessarily the one used at creation.

        Raises:
            UnknownTimezoneError: If ``tz_name`` cannot be resolved.
        """
        local = _as_utc(instant).astimezone(resolve_timezone(tz_name))
        return LocalDateTime(date=local.date(), time=format_time(local))

    def is_past(self, day: date, time_str: str, tz_name: str) -> bool:
        """True iff the wall-clock instant is at or before now."""
        return self.to_utc(day, time_str, tz_name).utc_start <= self.now()

    # ── Slots ────────────────────────────────────────────────────────────

    def available_slots(self, day: date, tz_name: str) -> SlotSequence:
        """Start times offered for ``day`` in ``tz_name``, earliest first.

        Only today is filtered: it hides every slot that is already past.
        Any other day gets the full grid; submitting a past day is refused
        by ``schedule``.

        Raises:
            UnknownTimezoneError: If ``tz_name`` cannot be resolved.
        """
        if day != self.today(tz_name):
            return SlotSequence(self._slot_minutes)
        return SlotSequence(
            self._slot_minutes,
            keep=lambda slot: not self.is_past(day, slot, tz_name),
        )

    def next_available_slot(self, day: date, tz_name: str) -> str:
        """Earliest valid slot of ``day``, or the default start when none remain."""
        return self.available_slots(day, tz_name).first() or self._default_start

    def reconcile(self, previous_time: str | None, day: date, tz_name: str) -> str:
        """Re-validate a chosen time after the date or timezone changed.

        Keeps ``previous_time`` when it is still offered, otherwise picks the
        earliest offered slot, and falls back to the default start time when
        the day has nothing left (see ``reconcile_selection`` for the date
        roll-over).

        Raises:
            InvalidTimeFormatError: If ``previous_time`` is set but malformed.
            UnknownTimezoneError: If ``tz_name`` cannot be resolved.
        """
        selected, _ = self._reconcile(previous_time, day, tz_name)
        return selected

    def reconcile_selection(
        self, previous_time: str | None, day: date, tz_name: str
    ) -> LocalDateTime:
        """Like ``reconcile`` but moves to the next business day when ``day`` is exhausted."""
        selected, exhausted = self._reconcile(previous_time, day, tz_name)
        if exhausted:
            return LocalDateTime(date=next_business_day(day), time=self._default_start)
        return LocalDateTime(date=day, time=selected)

    def _reconcile(
        self, previous_time: str | None, day: date, tz_name: str
    ) -> tuple[str, bool]:
        previous = normalize_time(previous_time) if previous_time else None
        slots = list(self.available_slots(day, tz_name))

        if previous is not None and previous in slots:
            return previous, False

        if slots:
            selected, exhausted = slots[0], False
        else:
            selected, exhausted = self._default_start, True

        logger.debug(
            "Time slot reconciled",
            previous_time=previous,
            selected_time=selected,
            date=day.isoformat(),
            timezone=tz_name,
            exhausted=exhausted,
        )
        return selected, exhausted

    # ── Submission ───────────────────────────────────────────────────────

    def schedule(
        self, day: date, time_str: str, tz_name: str, duration_minutes: int
    ) -> UTCWindow:
        """Convert a submitted meeting time, refusing anything not after now.

        Raises:
            PastDateTimeError: If the resolved start is at or before now.
            InvalidTimeFormatError: If ``time_str`` is not ``HH:mm``.
            UnknownTimezoneError: If ``tz_name`` cannot be resolved.
        """
        window = self.to_utc(day, time_str, tz_name, duration_minutes)
        if window.utc_start <= self.now():
            logger.info(
                "Meeting submission rejected as past",
                date=day.isoformat(),
                time=time_str,
                timezone=tz_name,
                utc_start=window.utc_start.isoformat(),
            )
            raise PastDateTimeError(window.utc_start)
        return window

    def schedule_meeting(self, request: MeetingRequest) -> MeetingSchedule:
        """Validate a form submission and attach its persisted UTC pair."""
        window = self.schedule(
            request.date, request.start_time, request.timezone, request.duration.minutes
        )
        schedule = MeetingSchedule(
            meeting_title=request.meeting_title,
            date=request.date,
            start_time=normalize_time(request.start_time),
            duration=request.duration,
            location=request.location,
            timezone=request.timezone,
            participants=request.participants,
            description=request.description,
            start_time_utc=window.utc_start,
            end_time_utc=window.utc_end,
            display=self.format_with_timezone(
                window.utc_start, request.timezone, request.duration.minutes
            ),
        )
        logger.info(
            "Meeting scheduled",
            timezone=request.timezone,
            utc_start=window.utc_start.isoformat(),
            utc_end=window.utc_end.isoformat(),
            participant_count=len(request.participants),
        )
        return schedule

    @staticmethod
    def notification_for(schedule: MeetingSchedule) -> MeetingNotification:
        """The UTC-only payload for the notification / meeting-link collaborator."""
        return MeetingNotification(
            utc_start=schedule.start_time_utc,
            utc_end=schedule.end_time_utc,
            participants=list(schedule.participants),
        )

    # ── Conflicts ────────────────────────────────────────────────────────

    @staticmethod
    def has_conflict(
        window: UTCWindow,
        meetings: Iterable[ScheduledMeeting],
        exclude_id: str | None = None,
    ) -> bool:
        """Whether ``window`` overlaps any meeting other than ``exclude_id``."""
        return any(
            window.overlaps(meeting.window)
            for meeting in meetings
            if exclude_id is None or meeting.id != exclude_id
        )

    def suggest_next_available_slot(
        self,
        meetings: Iterable[ScheduledMeeting],
        preferred_start: datetime,
        duration_minutes: int,
        tz_name: str,
    ) -> LocalDateTime | None:
        """First valid, conflict-free slot at or after ``preferred_start``.

        Scans ``suggestion_days`` local days starting with the preferred
        start's local date. Returns None when every slot in the window is
        taken.
        """
        existing = list(meetings)
        preferred = _as_utc(preferred_start)
        first_day = self.from_utc(preferred, tz_name).date

        for offset in range(self._suggestion_days):
            day = first_day + timedelta(days=offset)
            for slot in self.available_slots(day, tz_name):
                window = self.to_utc(day, slot, tz_name, duration_minutes)
                if window.utc_start < preferred:
                    continue
                if not self.has_conflict(window, existing):
                    return LocalDateTime(date=day, time=slot)

        logger.info(
            "No free slot found",
            preferred_start=preferred.isoformat(),
            days_scanned=self._suggestion_days,
            timezone=tz_name,
        )
        return None

    # ── Display ──────────────────────────────────────────────────────────

    def format_with_timezone(
        self, utc_start: datetime, tz_name: str, duration_minutes: int
    ) -> str:
        """E.g. ``Jun 15, 2024 · 14:00 - 15:00 (CEST)``."""
        tz = resolve_timezone(tz_name)
        start = _as_utc(utc_start)
        local_start = start.astimezone(tz)
        local_end = (start + timedelta(minutes=duration_minutes)).astimezone(tz)
        abbreviation = local_start.tzname() or tz_name
        return (
            f"{local_start.strftime('%b %d, %Y')} · "
            f"{format_time(local_start)} - {format_time(local_end)} ({abbreviation})"
        )
