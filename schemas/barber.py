from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from schemas.working_hours import WorkingHours


class BarberBase(BaseModel):
    name: str
    image_url: str = ""


class BarberUpsert(BarberBase):
    shop_id: Optional[str] = None


class BarberUpdate(BaseModel):
    name: Optional[str] = None
    image_url: Optional[str] = None
    active: Optional[bool] = None


class Barber(BarberBase):
    barber_id: str
    shop_id: str
    active: bool = True
    working_hours: Optional[WorkingHours] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
