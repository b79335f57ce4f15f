from pydantic import BaseModel
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "customer"
    BARBER = "barber"


class AuthContext(BaseModel):
    """Identity of the caller, passed explicitly into every operation."""
    user_id: str
    role: Role

    @property
    def is_barber(self) -> bool:
        return self.role == Role.BARBER
