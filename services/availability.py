"""Slot generation for a barber's working day.

Everything here is pure: the same working hours, day, duration, busy ranges
and ``now`` always produce the same grid. Store access lives in
``crud.appointment_crud`` and orchestration in ``services.booking_service``.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple, Union
import logging
import re

from schemas.appointment import AppointmentStatus, ACTIVE_STATUSES
from schemas.slot import BlockedReason, BusyRange, DayState, Slot, SlotGrid
from schemas.working_hours import ClosedDay, OpenDay, WorkingHours
from services.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
MINUTES_PER_DAY = 24 * 60


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open interval overlap: touching endpoints do not count."""
    return a_start < b_end and a_end > b_start


def time_to_minutes(value: str) -> int:
    """Convert "HH:MM" into minutes from midnight."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ConfigurationError(f"Invalid time '{value}', expected HH:MM")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes > 59 or total > MINUTES_PER_DAY:
        raise ConfigurationError(f"Invalid time '{value}', expected HH:MM")
    return total


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def weekday_key(day: date) -> str:
    # Working hours use 0=Sunday .. 6=Saturday, Python's weekday() is 0=Monday
    return str((day.weekday() + 1) % 7)


def _as_date(day: Union[date, datetime]) -> date:
    if isinstance(day, datetime):
        return day.date()
    return day


def resolve_day_hours(working_hours: Optional[WorkingHours],
                      day: Union[date, datetime]) -> Tuple[DayState, Optional[OpenDay]]:
    """Find the hours that apply on ``day``.

    No working hours at all is NOT_CONFIGURED; a missing or closed weekday is
    CLOSED.
    """
    if working_hours is None or not working_hours.week:
        return DayState.NOT_CONFIGURED, None

    day_hours = working_hours.week.get(weekday_key(_as_date(day)))
    if day_hours is None or isinstance(day_hours, ClosedDay):
        return DayState.CLOSED, None
    return DayState.OPEN, day_hours


def busy_ranges_from_appointments(appointments: Iterable) -> List[BusyRange]:
    """Busy ranges of the appointments that still hold their time."""
    ranges = []
    for appointment in appointments:
        status = appointment["status"] if isinstance(appointment, dict) else appointment.status
        if AppointmentStatus(status).value not in ACTIVE_STATUSES:
            continue
        if isinstance(appointment, dict):
            ranges.append(BusyRange(start_at=appointment["start_at"], end_at=appointment["end_at"]))
        else:
            ranges.append(BusyRange(start_at=appointment.start_at, end_at=appointment.end_at))
    return ranges


def _parse_open_day(working_hours: WorkingHours, open_day: OpenDay):
    open_min = time_to_minutes(open_day.start)
    close_min = time_to_minutes(open_day.end)
    if open_min >= close_min:
        raise ConfigurationError(f"Working day {open_day.start}-{open_day.end} ends before it starts")

    step = working_hours.slot_step_minutes
    if step is None or step <= 0:
        raise ConfigurationError(f"Slot step must be positive, got {step}")

    breaks = []
    for br in open_day.breaks:
        br_start, br_end = time_to_minutes(br.start), time_to_minutes(br.end)
        if br_start >= br_end:
            raise ConfigurationError(f"Break {br.start}-{br.end} ends before it starts")
        breaks.append((br_start, br_end))
    return open_min, close_min, step, breaks


def build_slot_grid(working_hours: Optional[WorkingHours],
                    day: Union[date, datetime],
                    duration_minutes: int,
                    busy_ranges: Sequence[BusyRange],
                    now: datetime,
                    barber_id: Optional[str] = None) -> SlotGrid:
    """Build the full slot grid for ``day``.

    Every candidate start appears in the result; blocked ones carry the
    reason (break, then past, then busy). A slot never runs past closing time.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise ConfigurationError(f"Service duration must be positive, got {duration_minutes}")

    day = _as_date(day)
    state, open_day = resolve_day_hours(working_hours, day)
    grid = SlotGrid(barber_id=barber_id, date=day, duration_minutes=duration_minutes, state=state)
    if state != DayState.OPEN:
        return grid

    try:
        open_min, close_min, step, breaks = _parse_open_day(working_hours, open_day)
    except ConfigurationError as e:
        logger.warning(f"Ignoring misconfigured working hours for barber {barber_id}: {e.message}")
        grid.state = DayState.NOT_CONFIGURED
        return grid

    midnight = datetime.combine(day, time.min)
    is_today = now.date() == day
    busy = [(b.start_at, b.end_at) for b in busy_ranges]

    slots = []
    # m + duration <= close, so no slot runs past closing time
    for m in range(open_min, close_min - duration_minutes + 1, step):
        slot_start = midnight + timedelta(minutes=m)
        slot_end = slot_start + timedelta(minutes=duration_minutes)

        if any(overlaps(m, m + duration_minutes, bs, be) for bs, be in breaks):
            reason = BlockedReason.BREAK
        elif is_today and slot_start <= now:
            reason = BlockedReason.PAST
        elif any(overlaps(slot_start, slot_end, bs, be) for bs, be in busy):
            reason = BlockedReason.BUSY
        else:
            reason = BlockedReason.NONE

        slots.append(Slot(
            start_at=slot_start,
            end_at=slot_end,
            label=minutes_to_time(m),
            blocked_reason=reason,
        ))

    grid.slots = slots
    return grid


def generate_slots(working_hours: Optional[WorkingHours],
                   day: Union[date, datetime],
                   duration_minutes: int,
                   busy_ranges: Sequence[BusyRange],
                   now: datetime) -> List[Slot]:
    return build_slot_grid(working_hours, day, duration_minutes, busy_ranges, now).slots


def derive_display_status(status: Union[AppointmentStatus, str],
                          start_at: datetime,
                          now: datetime) -> AppointmentStatus:
    """Status to show for an appointment.

    COMPLETED is never written by the booking flow; a confirmed appointment
    whose start time has passed is shown as completed.
    """
    status = AppointmentStatus(status)
    if status == AppointmentStatus.CONFIRMED and start_at < now:
        return AppointmentStatus.COMPLETED
    return status
