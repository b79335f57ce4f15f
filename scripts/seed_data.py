from config.database import Database
from config.settings import settings
from crud import barber_crud, service_crud
from schemas.barber import BarberUpsert
from schemas.service import ServiceCreate
from schemas.working_hours import WorkingHoursUpdate
import asyncio
import logging

logger = logging.getLogger(__name__)

DEMO_BARBER_ID = "demo_barber_1"

DEMO_HOURS = {
    "time_zone": "Europe/Istanbul",
    "slot_step_minutes": 30,
    "week": {
        "0": {"closed": True},
        **{str(day): {"start": "09:00", "end": "19:00", "breaks": [{"start": "12:00", "end": "13:00"}]}
           for day in range(1, 6)},
        "6": {"start": "10:00", "end": "16:00", "breaks": []},
    },
}

DEMO_SERVICES = [
    ServiceCreate(name="Haircut", description="Classic cut and styling", duration_minutes=30, price=300),
    ServiceCreate(name="Beard Trim", description="Beard shaping with hot towel", duration_minutes=20, price=150),
    ServiceCreate(name="Haircut & Beard", description="Full grooming", duration_minutes=60, price=420),
]


async def insert_demo_data():
    await Database.connect_db()
    try:
        barber = await barber_crud.ensure_barber(
            DEMO_BARBER_ID, BarberUpsert(name="Demo Barber", shop_id=settings.default_shop_id)
        )
        await barber_crud.update_working_hours(barber.barber_id, WorkingHoursUpdate(**DEMO_HOURS))

        existing = {service.name for service in await service_crud.get_active_services(barber.shop_id)}
        for service in DEMO_SERVICES:
            if service.name in existing:
                logger.info(f"Service {service.name} already exists")
                continue
            created = await service_crud.create_service(service, barber.barber_id)
            logger.info(f"Created service {created.name} ({created.service_id})")
    finally:
        await Database.close_db()


if __name__ == "__main__":
    asyncio.run(insert_demo_data())
