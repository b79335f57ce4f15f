from fastapi import APIRouter, HTTPException, Depends, Query
from typing import List, Optional
from schemas.appointment import (
    AppointmentCreated, AppointmentView, AvailabilityCheck, AvailabilityCheckRequest,
    BookingRequest, RescheduleRequest
)
from schemas.auth import AuthContext
from crud import appointment_crud
from services import booking_service
from services.exceptions import ForbiddenError
from config.database import get_db, Database
from config.settings import settings
from routes.deps import get_auth_context

router = APIRouter(tags=["appointments"])


@router.post("/check", response_model=AvailabilityCheck)
async def check_availability(request: AvailabilityCheckRequest, db: Database = Depends(get_db)):
    if request.start_at >= request.end_at:
        raise HTTPException(status_code=422, detail="start_at must be before end_at")
    return await appointment_crud.check_availability(
        request.shop_id or settings.default_shop_id, request.barber_id, request.start_at, request.end_at
    )


@router.post("/", response_model=AppointmentCreated, status_code=201)
async def book_appointment(request: BookingRequest, actor: AuthContext = Depends(get_auth_context),
                           db: Database = Depends(get_db)):
    return await booking_service.book_slot(actor, request)


@router.get("/me", response_model=List[AppointmentView])
async def get_my_appointments(limit: int = Query(50, gt=0, le=200), actor: AuthContext = Depends(get_auth_context),
                              db: Database = Depends(get_db)):
    appointments = await appointment_crud.list_user_appointments(actor.user_id, limit)
    return booking_service.appointment_views(appointments)


@router.get("/me/upcoming", response_model=Optional[AppointmentView])
async def get_upcoming_appointment(actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    appointment = await appointment_crud.get_upcoming_appointment_for_user(actor.user_id)
    if not appointment:
        return None
    return booking_service.appointment_views([appointment])[0]


@router.get("/me/past", response_model=List[AppointmentView])
async def get_past_appointments(limit: int = Query(10, gt=0, le=100), actor: AuthContext = Depends(get_auth_context),
                                db: Database = Depends(get_db)):
    appointments = await appointment_crud.get_past_appointments_for_user(actor.user_id, limit=limit)
    return booking_service.appointment_views(appointments)


@router.get("/{appointment_id}", response_model=AppointmentView)
async def get_appointment(appointment_id: str, actor: AuthContext = Depends(get_auth_context),
                          db: Database = Depends(get_db)):
    appointment = await appointment_crud.get_appointment(appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    if actor.user_id not in (appointment.user_id, appointment.barber_id):
        raise ForbiddenError()
    return booking_service.appointment_views([appointment])[0]


@router.post("/{appointment_id}/confirm", response_model=AppointmentView)
async def confirm_appointment(appointment_id: str, actor: AuthContext = Depends(get_auth_context),
                              db: Database = Depends(get_db)):
    appointment = await appointment_crud.confirm_appointment(appointment_id, actor)
    return booking_service.appointment_views([appointment])[0]


@router.post("/{appointment_id}/cancel", response_model=AppointmentView)
async def cancel_appointment(appointment_id: str, actor: AuthContext = Depends(get_auth_context),
                             db: Database = Depends(get_db)):
    appointment = await appointment_crud.cancel_appointment(appointment_id, actor)
    return booking_service.appointment_views([appointment])[0]


@router.post("/{appointment_id}/reschedule", response_model=AppointmentView)
async def reschedule_appointment(appointment_id: str, request: RescheduleRequest,
                                 actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    appointment = await booking_service.reschedule_slot(actor, appointment_id, request.new_start_at)
    return booking_service.appointment_views([appointment])[0]
