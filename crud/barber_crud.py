from typing import List, Optional
from schemas.barber import Barber, BarberUpsert, BarberUpdate
from schemas.working_hours import WorkingHours, WorkingHoursUpdate
from config.database import Database
from config.settings import settings
from pydantic import ValidationError
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


def _to_barber(doc: dict) -> Barber:
    raw_hours = doc.get("working_hours")
    doc = {k: v for k, v in doc.items() if k not in ("_id", "working_hours")}
    working_hours = None
    if raw_hours:
        try:
            working_hours = WorkingHours(**raw_hours)
        except ValidationError as e:
            # Unreadable hours behave like missing hours: nothing is bookable
            logger.warning(f"Stored working hours for barber {doc.get('barber_id')} are invalid: {e}")
    return Barber(**doc, working_hours=working_hours)


async def ensure_barber(barber_id: str, barber: BarberUpsert) -> Barber:
    """Create the barber document if it does not exist yet."""
    db = Database()
    existing = await db.barbers.find_one({"barber_id": barber_id})
    if existing:
        return _to_barber(existing)

    now = datetime.now()
    barber_dict = {
        "barber_id": barber_id,
        "shop_id": barber.shop_id or settings.default_shop_id,
        "name": barber.name.strip(),
        "image_url": barber.image_url,
        "active": True,
        "created_at": now,
        "updated_at": now,
    }
    await db.barbers.insert_one(barber_dict)
    logger.info(f"Created barber {barber_id} in shop {barber_dict['shop_id']}")
    return _to_barber(barber_dict)


async def get_barber(barber_id: str) -> Optional[Barber]:
    db = Database()
    barber = await db.barbers.find_one({"barber_id": barber_id})
    return _to_barber(barber) if barber else None


async def get_active_barbers(shop_id: str) -> List[Barber]:
    db = Database()
    barbers = await db.barbers.find({"shop_id": shop_id, "active": True}).to_list(length=None)
    return [_to_barber(barber) for barber in barbers]


async def update_barber(barber_id: str, barber_update: BarberUpdate) -> Optional[Barber]:
    db = Database()

    update_data = {k: v for k, v in barber_update.model_dump().items() if v is not None}
    if "name" in update_data:
        update_data["name"] = update_data["name"].strip()
    update_data["updated_at"] = datetime.now()

    result = await db.barbers.update_one({"barber_id": barber_id}, {"$set": update_data})
    if result.matched_count:
        return await get_barber(barber_id)
    return None


async def update_working_hours(barber_id: str, working_hours: WorkingHoursUpdate) -> Optional[Barber]:
    db = Database()
    result = await db.barbers.update_one(
        {"barber_id": barber_id},
        {"$set": {
            "working_hours": working_hours.model_dump(),
            "updated_at": datetime.now()
        }}
    )
    if not result.matched_count:
        return None

    logger.info(f"Updated working hours for barber {barber_id}")
    return await get_barber(barber_id)
