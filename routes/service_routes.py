from fastapi import APIRouter, HTTPException, Depends
from typing import List, Optional
from schemas.auth import AuthContext
from schemas.service import ServiceCreate, ServiceUpdate, Service
from crud import barber_crud, service_crud
from config.database import get_db, Database
from config.settings import settings
from routes.deps import get_auth_context, require_barber
from services.exceptions import ForbiddenError

router = APIRouter(tags=["services"])


@router.post("/", response_model=Service)
async def create_service(service: ServiceCreate, actor: AuthContext = Depends(get_auth_context),
                         db: Database = Depends(get_db)):
    require_barber(actor)
    return await service_crud.create_service(service, actor.user_id)


@router.get("/", response_model=List[Service])
async def get_active_services(shop_id: Optional[str] = None, db: Database = Depends(get_db)):
    return await service_crud.get_active_services(shop_id or settings.default_shop_id)


@router.get("/{service_id}", response_model=Service)
async def get_service(service_id: str, db: Database = Depends(get_db)):
    service = await service_crud.get_service(service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


async def _get_manageable_service(service_id: str, actor: AuthContext) -> Service:
    """A service the calling barber may change: their own, or one of their shop's."""
    require_barber(actor)
    service = await service_crud.get_service(service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    if service.created_by_barber_id != actor.user_id:
        barber = await barber_crud.get_barber(actor.user_id)
        if not barber or barber.shop_id != service.shop_id:
            raise ForbiddenError("Services can only be changed by barbers of the same shop")
    return service


@router.put("/{service_id}", response_model=Service)
async def update_service(service_id: str, service_data: ServiceUpdate,
                         actor: AuthContext = Depends(get_auth_context), db: Database = Depends(get_db)):
    """Update a service with the provided data"""
    await _get_manageable_service(service_id, actor)
    service = await service_crud.update_service(service_id, service_data)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


@router.post("/{service_id}/deactivate", response_model=Service)
async def deactivate_service(service_id: str, actor: AuthContext = Depends(get_auth_context),
                             db: Database = Depends(get_db)):
    await _get_manageable_service(service_id, actor)
    service = await service_crud.deactivate_service(service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service
