from datetime import date, datetime, time, timedelta
from typing import List, Optional, Union
from crud.barber_crud import get_barber
from crud.service_crud import get_service
from crud.appointment_crud import create_appointment, get_appointment, get_busy_ranges, reschedule_appointment
from schemas.appointment import (
    ACTIVE_STATUSES, Appointment, AppointmentCreate, AppointmentCreated, AppointmentView, BarberSnapshot,
    BookingRequest, ServiceSnapshot
)
from schemas.auth import AuthContext
from schemas.barber import Barber
from schemas.slot import BlockedReason, DayState, SlotGrid
from services.availability import build_slot_grid, derive_display_status
from services.exceptions import (
    BookingError, ForbiddenError, NotFoundError, SlotUnavailableError, StatusTransitionError
)
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

# Why a day has no bookable slots, as reported to the client
DAY_STATE_ERRORS = {
    DayState.NOT_CONFIGURED: ("WORKING_HOURS_NOT_CONFIGURED", "The barber has not set working hours yet"),
    DayState.CLOSED: ("CLOSED", "The barber does not work on this day"),
}


async def _load_barber_and_service(barber_id: str, service_id: str):
    barber = await get_barber(barber_id)
    if not barber or not barber.active:
        raise NotFoundError(f"Barber {barber_id} not found")

    service = await get_service(service_id)
    if not service:
        raise NotFoundError(f"Service {service_id} not found")
    if not service.active:
        raise BookingError("SERVICE_INACTIVE", f"Service {service.name} is no longer offered",
                           "Pick another service", status_code=422)
    return barber, service


async def _build_grid(shop_id: str, barber: Barber, duration_minutes: int,
                      day: Union[date, datetime], now: datetime,
                      exclude_id: Optional[str] = None) -> SlotGrid:
    if isinstance(day, datetime):
        day = day.date()
    day_start = datetime.combine(day, time.min)
    busy_ranges = await get_busy_ranges(shop_id, barber.barber_id, day_start, exclude_id=exclude_id)
    return build_slot_grid(
        barber.working_hours, day_start, duration_minutes, busy_ranges, now,
        barber_id=barber.barber_id
    )


def _check_offered(grid: SlotGrid, start_at: datetime, now: datetime):
    """Raise unless ``start_at`` is a bookable slot of ``grid``."""
    if grid.state in DAY_STATE_ERRORS:
        code, message = DAY_STATE_ERRORS[grid.state]
        raise BookingError(code, message, "Pick another day or barber", status_code=422)

    offered = next((slot for slot in grid.slots if slot.start_at == start_at), None)
    if offered is None:
        raise SlotUnavailableError(f"{start_at:%H:%M} is not an offered start time", code="SLOT_NOT_OFFERED")
    if offered.blocked_reason == BlockedReason.BUSY:
        logger.info(f"Rejected booking at {start_at:%Y-%m-%d %H:%M}: slot is taken")
        raise SlotUnavailableError()
    if not offered.bookable or offered.start_at <= now:
        raise SlotUnavailableError(f"{start_at:%H:%M} can not be booked", code="SLOT_NOT_OFFERED")


async def get_slot_grid(shop_id: Optional[str], barber_id: str, service_id: str,
                        day: Union[date, datetime], now: Optional[datetime] = None) -> SlotGrid:
    """Slot grid of a barber for one day and one service."""
    shop_id = shop_id or settings.default_shop_id
    now = now or datetime.now()
    barber, service = await _load_barber_and_service(barber_id, service_id)
    return await _build_grid(shop_id, barber, service.duration_minutes, day, now)


async def book_slot(actor: AuthContext, request: BookingRequest,
                    now: Optional[datetime] = None) -> AppointmentCreated:
    """Book a slot for the calling customer.

    The start must be one of the bookable slots of the current grid; the
    store re-checks overlaps when it commits.
    """
    if actor.is_barber:
        raise ForbiddenError("Only customers can book appointments")

    shop_id = request.shop_id or settings.default_shop_id
    now = now or datetime.now()
    barber, service = await _load_barber_and_service(request.barber_id, request.service_id)
    if barber.shop_id != shop_id or service.shop_id != shop_id:
        raise NotFoundError(f"Barber or service not found in shop {shop_id}")

    grid = await _build_grid(shop_id, barber, service.duration_minutes, request.start_at, now)
    _check_offered(grid, request.start_at, now)

    appointment = AppointmentCreate(
        shop_id=shop_id,
        user_id=actor.user_id,
        barber_id=barber.barber_id,
        service_id=service.service_id,
        service_snapshot=ServiceSnapshot(
            name=service.name,
            description=service.description,
            duration_minutes=service.duration_minutes,
            price=service.price,
            image_url=service.image_url,
        ),
        barber_snapshot=BarberSnapshot(name=barber.name, image_url=barber.image_url),
        user_snapshot=request.user_snapshot,
        start_at=request.start_at,
        end_at=request.start_at + timedelta(minutes=service.duration_minutes),
    )
    return await create_appointment(appointment, actor)


async def reschedule_slot(actor: AuthContext, appointment_id: str, new_start_at: datetime,
                          now: Optional[datetime] = None) -> Appointment:
    """Move an appointment to another slot of its barber's grid.

    The new start follows the same rules as a new booking; the appointment's
    own time does not count as busy and its booked duration is kept.
    """
    now = now or datetime.now()
    appointment = await get_appointment(appointment_id)
    if not appointment:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    participant = appointment.barber_id if actor.is_barber else appointment.user_id
    if participant != actor.user_id:
        raise ForbiddenError()
    if appointment.status.value not in ACTIVE_STATUSES:
        raise StatusTransitionError(appointment.status.value, "RESCHEDULED")

    barber = await get_barber(appointment.barber_id)
    if not barber or not barber.active:
        raise NotFoundError(f"Barber {appointment.barber_id} not found")

    grid = await _build_grid(
        appointment.shop_id, barber, appointment.service_snapshot.duration_minutes, new_start_at, now,
        exclude_id=appointment_id
    )
    _check_offered(grid, new_start_at, now)
    return await reschedule_appointment(appointment_id, new_start_at, actor)


def appointment_views(appointments: List[Appointment], now: Optional[datetime] = None) -> List[AppointmentView]:
    """Attach the status to display to each appointment."""
    now = now or datetime.now()
    return [
        AppointmentView(
            **appointment.model_dump(),
            display_status=derive_display_status(appointment.status, appointment.start_at, now)
        )
        for appointment in appointments
    ]
