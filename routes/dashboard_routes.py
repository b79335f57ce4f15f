from fastapi import APIRouter, Depends
from datetime import date
from typing import Optional
from schemas.auth import AuthContext
from schemas.dashboard import Dashboard, WeeklyCoachResponse
from crud import barber_crud
from services import dashboard_service
from services.weekly_coach_service import WeeklyCoachService
from config.database import get_db, Database
from config.settings import settings
from routes.deps import get_auth_context, require_barber

router = APIRouter(tags=["dashboard"])


def _resolve_range(range_key: str, start: Optional[date], end: Optional[date]):
    if start and end:
        return start, end
    return dashboard_service.range_window(range_key)


@router.get("/me", response_model=Dashboard)
async def get_dashboard(range: str = "7d", start: Optional[date] = None, end: Optional[date] = None,
                        actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    require_barber(actor)
    start, end = _resolve_range(range, start, end)
    return await dashboard_service.get_dashboard(actor.user_id, start, end)


@router.post("/me/weekly-coach", response_model=WeeklyCoachResponse)
async def get_weekly_coach(start: Optional[date] = None, end: Optional[date] = None,
                           actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    """AI summary of the last week, limited to one analysis per week"""
    require_barber(actor)
    start, end = _resolve_range("7d", start, end)

    barber = await barber_crud.get_barber(actor.user_id)
    shop_id = barber.shop_id if barber else settings.default_shop_id

    dashboard = await dashboard_service.get_dashboard(actor.user_id, start, end)
    payload = dashboard_service.build_weekly_payload(shop_id, dashboard)
    return await WeeklyCoachService(db).get_weekly_coach(actor, payload)
