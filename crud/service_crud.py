from typing import List, Optional
from schemas.service import Service, ServiceCreate, ServiceUpdate, generate_service_id
from config.database import Database
from config.settings import settings
from datetime import datetime
from pymongo import DESCENDING
import logging

logger = logging.getLogger(__name__)


def _to_service(doc: dict) -> Service:
    return Service(**{k: v for k, v in doc.items() if k != "_id"})


async def create_service(service: ServiceCreate, barber_id: str) -> Service:
    """Create a new service"""
    db = Database()
    service_dict = service.model_dump()
    service_dict["shop_id"] = service.shop_id or settings.default_shop_id
    service_dict["name"] = service.name.strip()
    service_dict["description"] = service.description.strip()
    service_dict["created_by_barber_id"] = barber_id
    service_dict["active"] = True
    service_dict["created_at"] = datetime.now()
    service_dict["updated_at"] = datetime.now()
    service_dict["service_id"] = generate_service_id(service.name)

    await db.services.insert_one(service_dict)
    logger.info(f"Created service {service_dict['service_id']} for shop {service_dict['shop_id']}")

    return _to_service(service_dict)


async def get_service(service_id: str) -> Optional[Service]:
    """Get a service by ID"""
    db = Database()
    service = await db.services.find_one({"service_id": service_id})
    if service:
        return _to_service(service)
    return None


async def get_active_services(shop_id: str) -> List[Service]:
    """Active services of a shop, newest first"""
    db = Database()
    services = await db.services.find(
        {"shop_id": shop_id, "active": True}
    ).sort("created_at", DESCENDING).to_list(length=None)
    return [_to_service(service) for service in services]


async def update_service(service_id: str, service_update: ServiceUpdate) -> Optional[Service]:
    """Update a service with the provided data"""
    db = Database()
    service_data = {k: v for k, v in service_update.model_dump().items() if v is not None}
    for field in ("name", "description"):
        if field in service_data:
            service_data[field] = service_data[field].strip()
    service_data["updated_at"] = datetime.now()

    result = await db.services.update_one(
        {"service_id": service_id},
        {"$set": service_data}
    )

    if result.matched_count:
        return await get_service(service_id)
    return None


async def deactivate_service(service_id: str) -> Optional[Service]:
    """Services are never deleted, only hidden from customers"""
    return await update_service(service_id, ServiceUpdate(active=False))
