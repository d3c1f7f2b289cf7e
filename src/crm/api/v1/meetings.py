"""REST API endpoints for meeting scheduling.

Serves the timezone catalog, the slot grid for a day, slot reconciliation
after date/timezone edits, local <-> UTC conversion, and validation of a
meeting submission. Validation always happens before the caller persists
anything.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.crm.api.deps import get_schedule_resolver
from src.crm.config import get_settings
from src.crm.core.monitoring import record_schedule_rejection
from src.crm.meetings.scheduler import (
    InvalidTimeFormatError,
    PastDateTimeError,
    ScheduleResolver,
    normalize_time,
)
from src.crm.meetings.schemas import (
    LocalDateTime,
    MeetingNotification,
    MeetingRequest,
    MeetingSchedule,
    ScheduledMeeting,
    TimezoneOption,
    UTCWindow,
)
from src.crm.meetings.timezones import (
    MAJOR_TIMEZONES,
    UnknownTimezoneError,
    match_user_timezone,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class ConversionOperation(str, Enum):
    TO_UTC = "toUTC"
    FROM_UTC = "fromUTC"


class TimezoneCatalogResponse(BaseModel):
    default_timezone: str
    timezones: list[TimezoneOption]


class SlotsResponse(BaseModel):
    date: date
    timezone: str
    slots: list[str]
    next_available: str


class ReconcileRequest(BaseModel):
    """The previously chosen time and the new date/timezone context."""

    previous_time: str | None = None
    date: date
    timezone: str


class ReconcileResponse(BaseModel):
    time: str
    kept: bool
    selection: LocalDateTime


class ConvertRequest(BaseModel):
    operation: ConversionOperation
    timezone: str
    local_date: date | None = None
    local_time: str | None = None
    duration: int = Field(default=0, ge=0, description="Minutes")
    utc_datetime: datetime | None = None


class ConvertResponse(BaseModel):
    window: UTCWindow | None = None
    local: LocalDateTime | None = None


class ScheduleResponse(BaseModel):
    meeting: MeetingSchedule
    notification: MeetingNotification


class SuggestRequest(BaseModel):
    meetings: list[ScheduledMeeting] = Field(default_factory=list)
    preferred_start: datetime
    duration: int = Field(default=60, ge=0, description="Minutes")
    timezone: str
    exclude_id: str | None = None


class SuggestResponse(BaseModel):
    conflict: bool
    suggestion: LocalDateTime | None = None


def _unprocessable(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=str(exc),
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/timezones", response_model=TimezoneCatalogResponse)
async def list_timezones(
    viewer_timezone: str | None = Query(None, description="Browser-reported IANA zone"),
) -> TimezoneCatalogResponse:
    """Timezone selector options, with the viewer's zone mapped onto the catalog."""
    default = (
        match_user_timezone(viewer_timezone)
        if viewer_timezone
        else get_settings().DEFAULT_TIMEZONE
    )
    return TimezoneCatalogResponse(default_timezone=default, timezones=MAJOR_TIMEZONES)


@router.get("/slots", response_model=SlotsResponse)
async def get_slots(
    day: date = Query(..., alias="date"),
    timezone: str = Query(...),
    resolver: ScheduleResolver = Depends(get_schedule_resolver),
) -> SlotsResponse:
    """Start times still available on a day in a timezone."""
    try:
        slots = list(resolver.available_slots(day, timezone))
    except UnknownTimezoneError as exc:
        raise _unprocessable(exc) from exc
    return SlotsResponse(
        date=day,
        timezone=timezone,
        slots=slots,
        next_available=slots[0] if slots else resolver.default_start,
    )


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_slot(
    body: ReconcileRequest,
    resolver: ScheduleResolver = Depends(get_schedule_resolver),
) -> ReconcileResponse:
    """Re-validate the chosen time after the date or timezone changed."""
    try:
        selected = resolver.reconcile(body.previous_time, body.date, body.timezone)
        selection = resolver.reconcile_selection(body.previous_time, body.date, body.timezone)
    except (InvalidTimeFormatError, UnknownTimezoneError) as exc:
        raise _unprocessable(exc) from exc

    kept = (
        bool(body.previous_time)
        and selection.date == body.date
        and selected == normalize_time(body.previous_time)
    )
    return ReconcileResponse(time=selected, kept=kept, selection=selection)


@router.post("/convert", response_model=ConvertResponse)
async def convert(
    body: ConvertRequest,
    resolver: ScheduleResolver = Depends(get_schedule_resolver),
) -> ConvertResponse:
    """Convert a local date/time to a UTC window, or a UTC instant to local time."""
    try:
        if body.operation == ConversionOperation.TO_UTC:
            if body.local_date is None or body.local_time is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail="toUTC requires local_date and local_time",
                )
            window = resolver.to_utc(
                body.local_date, body.local_time, body.timezone, body.duration
            )
            return ConvertResponse(window=window)

        if body.utc_datetime is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="fromUTC requires utc_datetime",
            )
        return ConvertResponse(local=resolver.from_utc(body.utc_datetime, body.timezone))
    except (InvalidTimeFormatError, UnknownTimezoneError) as exc:
        raise _unprocessable(exc) from exc


@router.post("/schedule", response_model=ScheduleResponse)
async def schedule_meeting(
    body: MeetingRequest,
    resolver: ScheduleResolver = Depends(get_schedule_resolver),
) -> ScheduleResponse:
    """Validate a meeting submission and return what the caller should persist."""
    try:
        meeting = resolver.schedule_meeting(body)
    except PastDateTimeError as exc:
        record_schedule_rejection("past")
        raise _unprocessable(exc) from exc
    except InvalidTimeFormatError as exc:
        record_schedule_rejection("time_format")
        raise _unprocessable(exc) from exc
    except UnknownTimezoneError as exc:
        record_schedule_rejection("timezone")
        raise _unprocessable(exc) from exc

    return ScheduleResponse(
        meeting=meeting,
        notification=resolver.notification_for(meeting),
    )


@router.post("/suggest", response_model=SuggestResponse)
async def suggest_slot(
    body: SuggestRequest,
    resolver: ScheduleResolver = Depends(get_schedule_resolver),
) -> SuggestResponse:
    """Report a conflict at the preferred start and suggest the next free slot."""
    try:
        requested = UTCWindow(
            utc_start=body.preferred_start,
            utc_end=body.preferred_start + timedelta(minutes=body.duration),
        )
        conflict = resolver.has_conflict(requested, body.meetings, body.exclude_id)
        suggestion = None
        if conflict:
            candidates = [m for m in body.meetings if m.id != body.exclude_id]
            suggestion = resolver.suggest_next_available_slot(
                candidates, body.preferred_start, body.duration, body.timezone
            )
    except UnknownTimezoneError as exc:
        raise _unprocessable(exc) from exc
    return SuggestResponse(conflict=conflict, suggestion=suggestion)
