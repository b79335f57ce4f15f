"""Test fixtures."""

import os
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

# Set test environment before importing the app
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ["MONGODB_TRANSACTIONS"] = "false"
os.environ["DEFAULT_SHOP_ID"] = "main"

from config.database import Database
from crud import barber_crud, service_crud
from schemas.appointment import AppointmentCreate, BarberSnapshot, ServiceSnapshot, UserSnapshot
from schemas.auth import AuthContext, Role
from schemas.barber import BarberUpsert
from schemas.service import ServiceCreate
from schemas.working_hours import WorkingHours, WorkingHoursUpdate

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
BEFORE_MONDAY = datetime(2030, 1, 6, 12, 0)

WEEK_HOURS = {
    "time_zone": "Europe/Istanbul",
    "slot_step_minutes": 30,
    "week": {
        "0": {"closed": True},
        "1": {"start": "09:00", "end": "12:00", "breaks": [{"start": "10:00", "end": "10:30"}]},
        "2": {"start": "09:00", "end": "18:00", "breaks": []},
    },
}


def at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def working_hours():
    return WorkingHours(**WEEK_HOURS)


@pytest_asyncio.fixture
async def db():
    """In-memory store with the production indexes."""
    Database.client = AsyncMongoMockClient()
    Database.db = Database.client["barber_test"]
    Database.use_transactions = False
    database = Database()
    await database.ensure_indexes()

    yield database

    Database.client = None
    Database.db = None


@pytest.fixture
def customer():
    return AuthContext(user_id="user_1", role=Role.CUSTOMER)


@pytest.fixture
def other_customer():
    return AuthContext(user_id="user_2", role=Role.CUSTOMER)


@pytest.fixture
def barber_actor():
    return AuthContext(user_id="barber_1", role=Role.BARBER)


@pytest_asyncio.fixture
async def barber(db, barber_actor):
    await barber_crud.ensure_barber(barber_actor.user_id, BarberUpsert(name="Ali", image_url="ali.png"))
    return await barber_crud.update_working_hours(barber_actor.user_id, WorkingHoursUpdate(**WEEK_HOURS))


@pytest_asyncio.fixture
async def service(db, barber_actor):
    return await service_crud.create_service(
        ServiceCreate(name="Haircut", description="Classic cut", duration_minutes=30, price=300),
        barber_actor.user_id
    )


@pytest.fixture
def make_appointment():
    def _make(start_at, duration=30, user_id="user_1", barber_id="barber_1", price=300):
        return AppointmentCreate(
            shop_id="main",
            user_id=user_id,
            barber_id=barber_id,
            service_id="SVHAI000001",
            service_snapshot=ServiceSnapshot(name="Haircut", duration_minutes=duration, price=price),
            barber_snapshot=BarberSnapshot(name="Ali"),
            user_snapshot=UserSnapshot(name="Ayse", surname="Yilmaz", phone="+905551112233"),
            start_at=start_at,
            end_at=start_at + timedelta(minutes=duration),
        )
    return _make
