from pydantic import AfterValidator, BaseModel, Field, model_validator
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, List, Optional
import random
import string


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"
    COMPLETED = "COMPLETED"

    @classmethod
    def _missing_(cls, value):
        # Older records used other spellings for the same states
        if isinstance(value, str):
            normalized = value.strip().upper()
            aliases = {"CANCELLED": "CANCELED", "DONE": "COMPLETED"}
            normalized = aliases.get(normalized, normalized)
            for member in cls:
                if member.value == normalized:
                    return member
        return None


# Only these block a barber's time
ACTIVE_STATUSES = [AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value]
TERMINAL_STATUSES = {AppointmentStatus.CANCELED, AppointmentStatus.COMPLETED}


class ServiceSnapshot(BaseModel):
    name: str
    description: Optional[str] = None
    duration_minutes: int = Field(gt=0)
    price: float = Field(ge=0)
    image_url: Optional[str] = None


class BarberSnapshot(BaseModel):
    name: str
    image_url: Optional[str] = None


class UserSnapshot(BaseModel):
    name: str
    surname: str = ""
    phone: Optional[str] = None


class AppointmentBase(BaseModel):
    shop_id: str
    user_id: str
    barber_id: str
    service_id: str
    service_snapshot: ServiceSnapshot
    barber_snapshot: BarberSnapshot
    user_snapshot: UserSnapshot
    start_at: datetime
    end_at: datetime

    @model_validator(mode="after")
    def check_range(self):
        if self.start_at >= self.end_at:
            raise ValueError("start_at must be before end_at")
        return self


class AppointmentCreate(AppointmentBase):
    pass


class Appointment(AppointmentBase):
    appointment_id: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AppointmentView(Appointment):
    """Appointment as shown in lists, with the derived display status."""
    display_status: AppointmentStatus


class AppointmentCreated(BaseModel):
    appointment_id: str


def local_time(value: datetime) -> datetime:
    """Appointments are stored in the shop's wall-clock time, without an offset."""
    if value.tzinfo is not None and value.utcoffset() is not None:
        raise ValueError("use the shop's local time without a timezone offset, e.g. 2030-01-07T09:00:00")
    return value.replace(tzinfo=None)


LocalDateTime = Annotated[datetime, AfterValidator(local_time)]


class AvailabilityCheckRequest(BaseModel):
    shop_id: Optional[str] = None
    barber_id: str
    start_at: LocalDateTime
    end_at: LocalDateTime


class AvailabilityCheck(BaseModel):
    available: bool


class BookingRequest(BaseModel):
    shop_id: Optional[str] = None
    barber_id: str
    service_id: str
    start_at: LocalDateTime
    user_snapshot: UserSnapshot


class RescheduleRequest(BaseModel):
    new_start_at: LocalDateTime


def generate_appointment_id(shop_id: str, user_id: str) -> str:
    shop_part = shop_id[:2].upper()
    user_part = user_id[:2].upper()

    # 8 random characters keep collisions negligible; the unique index catches the rest
    random_part = ''.join(random.choices(string.ascii_uppercase + string.digits, k=8))

    return f"AP{shop_part}{user_part}{random_part}"


# One-minute cells: overlapping bookings always share a key and back-to-back
# bookings never do, whatever minute the working day starts on
CLAIM_MINUTES = 1


def slot_claim_keys(barber_id: str, start_at: datetime, end_at: datetime) -> List[str]:
    """Keys of every claim cell touched by [start_at, end_at)."""
    cell = start_at.replace(second=0, microsecond=0)

    keys = []
    while cell < end_at:
        keys.append(f"{barber_id}|{cell.strftime('%Y-%m-%dT%H:%M')}")
        cell += timedelta(minutes=CLAIM_MINUTES)
    return keys
