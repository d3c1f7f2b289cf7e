"""Pydantic v2 schemas for meeting scheduling.

Defines the data contracts shared by the ScheduleResolver, the timezone
catalog and the meetings API: local wall-clock representations, UTC
windows, meeting requests and the payload handed to the notification /
meeting-link collaborator.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingDuration(str, Enum):
    """Durations offered by the meeting form."""

    FIFTEEN_MINUTES = "15 min"
    THIRTY_MINUTES = "30 min"
    ONE_HOUR = "1 hour"
    TWO_HOURS = "2 hours"

    @property
    def minutes(self) -> int:
        return _DURATION_MINUTES[self]


_DURATION_MINUTES: dict[MeetingDuration, int] = {
    MeetingDuration.FIFTEEN_MINUTES: 15,
    MeetingDuration.THIRTY_MINUTES: 30,
    MeetingDuration.ONE_HOUR: 60,
    MeetingDuration.TWO_HOURS: 120,
}


class MeetingLocation(str, Enum):
    ONLINE = "Online"
    IN_PERSON = "In-Person"


# ── Time Representations ─────────────────────────────────────────────────────


def _ensure_utc(value: datetime) -> datetime:
    """Instants without tzinfo are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LocalDateTime(BaseModel):
    """A wall-clock date and ``HH:mm`` time, meaningful only with a timezone."""

    date: date
    time: str


class UTCWindow(BaseModel):
    """Absolute start/end instants of a meeting, both timezone-aware UTC."""

    utc_start: datetime
    utc_end: datetime

    @field_validator("utc_start", "utc_end")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def overlaps(self, other: UTCWindow) -> bool:
        """Half-open overlap: back-to-back meetings do not conflict."""
        return self.utc_start < other.utc_end and self.utc_end > other.utc_start


class TimezoneOption(BaseModel):
    """A catalog entry for the timezone selector."""

    value: str
    label: str
    offset: str = Field(description="Standard-time UTC offset, e.g. +05:30")


# ── Meeting Models ───────────────────────────────────────────────────────────


class ScheduledMeeting(BaseModel):
    """An existing meeting as stored, used for conflict checks."""

    id: str
    utc_start: datetime
    utc_end: datetime

    @field_validator("utc_start", "utc_end")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    @property
    def window(self) -> UTCWindow:
        return UTCWindow(utc_start=self.utc_start, utc_end=self.utc_end)


class MeetingRequest(BaseModel):
    """A meeting as submitted by the form, in the organiser's local time."""

    meeting_title: str
    date: date
    start_time: str = Field(description="Local wall-clock start, HH:mm")
    duration: MeetingDuration = MeetingDuration.ONE_HOUR
    location: MeetingLocation = MeetingLocation.ONLINE
    timezone: str
    participants: list[str] = Field(default_factory=list)
    description: str | None = None


class MeetingSchedule(BaseModel):
    """Validated meeting with its persisted UTC pair.

    The timezone is kept next to the UTC instants so the pair can always be
    recomputed from (date, start_time, timezone, duration).
    """

    meeting_title: str
    date: date
    start_time: str
    duration: MeetingDuration
    location: MeetingLocation
    timezone: str
    participants: list[str] = Field(default_factory=list)
    description: str | None = None
    start_time_utc: datetime
    end_time_utc: datetime
    display: str = Field(description="Human-readable local time with zone abbreviation")


class MeetingNotification(BaseModel):
    """Payload for the notification / meeting-link collaborator.

    Carries UTC instants only; local time and timezone never cross this
    boundary.
    """

    utc_start: datetime
    utc_end: datetime
    participants: list[str] = Field(default_factory=list)
