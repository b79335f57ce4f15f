from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
import re
import random
import string


class ServiceBase(BaseModel):
    name: str
    description: str = ""
    image_url: str = ""
    duration_minutes: int = Field(gt=0)  # Duration in minutes
    price: float = Field(ge=0)


class ServiceCreate(ServiceBase):
    shop_id: Optional[str] = None


class ServiceUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    active: Optional[bool] = None


class Service(ServiceBase):
    service_id: str
    shop_id: str
    created_by_barber_id: str
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


def generate_service_id(name: str) -> str:
    # Remove special characters and spaces from name
    clean_name = re.sub(r'[^a-zA-Z0-9]', '', name)

    # Take first 3 characters of the name (or pad with 'X' if shorter)
    name_part = clean_name[:3].upper().ljust(3, 'X')

    random_part = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))

    return f"SV{name_part}{random_part}"
