from fastapi import APIRouter, HTTPException, Depends, Query
from datetime import date
from typing import List, Optional
from schemas.appointment import AppointmentStatus, AppointmentView
from schemas.auth import AuthContext
from schemas.barber import Barber, BarberUpsert, BarberUpdate
from schemas.slot import SlotGrid
from schemas.working_hours import WorkingHoursUpdate
from crud import appointment_crud, barber_crud
from services import booking_service
from config.database import get_db, Database
from config.settings import settings
from routes.deps import get_auth_context, require_barber

router = APIRouter(tags=["barbers"])


@router.get("/", response_model=List[Barber])
async def get_active_barbers(shop_id: Optional[str] = None, db: Database = Depends(get_db)):
    return await barber_crud.get_active_barbers(shop_id or settings.default_shop_id)


@router.put("/me", response_model=Barber)
async def ensure_barber(barber: BarberUpsert, actor: AuthContext = Depends(get_auth_context),
                        db: Database = Depends(get_db)):
    """Create the calling barber's profile if it does not exist yet"""
    require_barber(actor)
    return await barber_crud.ensure_barber(actor.user_id, barber)


@router.patch("/me", response_model=Barber)
async def update_barber(barber_update: BarberUpdate, actor: AuthContext = Depends(get_auth_context),
                        db: Database = Depends(get_db)):
    require_barber(actor)
    barber = await barber_crud.update_barber(actor.user_id, barber_update)
    if not barber:
        raise HTTPException(status_code=404, detail="Barber not found")
    return barber


@router.put("/me/working-hours", response_model=Barber)
async def update_working_hours(working_hours: WorkingHoursUpdate, actor: AuthContext = Depends(get_auth_context),
                               db: Database = Depends(get_db)):
    require_barber(actor)
    barber = await barber_crud.update_working_hours(actor.user_id, working_hours)
    if not barber:
        raise HTTPException(status_code=404, detail="Barber not found")
    return barber


@router.get("/me/appointments", response_model=List[AppointmentView])
async def get_my_appointments(
    status: Optional[AppointmentStatus] = None,
    page_size: int = Query(30, gt=0, le=200),
    actor: AuthContext = Depends(get_auth_context),
    db: Database = Depends(get_db)
):
    require_barber(actor)
    appointments = await appointment_crud.list_barber_appointments(actor.user_id, status, page_size)
    return booking_service.appointment_views(appointments)


@router.get("/me/appointments/day", response_model=List[AppointmentView])
async def get_my_day(day: date, shop_id: Optional[str] = None,
                     actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    require_barber(actor)
    appointments = await appointment_crud.get_barber_appointments_for_day(
        shop_id or settings.default_shop_id, actor.user_id, day
    )
    return booking_service.appointment_views(appointments)


@router.get("/{barber_id}", response_model=Barber)
async def get_barber(barber_id: str, db: Database = Depends(get_db)):
    barber = await barber_crud.get_barber(barber_id)
    if not barber:
        raise HTTPException(status_code=404, detail="Barber not found")
    return barber


@router.get("/{barber_id}/slots", response_model=SlotGrid)
async def get_slots(barber_id: str, service_id: str, day: date = Query(..., alias="date"),
                    shop_id: Optional[str] = None, db: Database = Depends(get_db)):
    return await booking_service.get_slot_grid(shop_id, barber_id, service_id, day)
