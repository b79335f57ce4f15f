from pydantic import BaseModel, computed_field
from datetime import date as Date, datetime
from enum import Enum
from typing import List, Optional


class BlockedReason(str, Enum):
    NONE = "none"
    BREAK = "break"
    PAST = "past"
    BUSY = "busy"


class DayState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    NOT_CONFIGURED = "NOT_CONFIGURED"


class BusyRange(BaseModel):
    start_at: datetime
    end_at: datetime


class Slot(BaseModel):
    start_at: datetime
    end_at: datetime
    label: str
    blocked_reason: BlockedReason = BlockedReason.NONE

    @computed_field
    @property
    def bookable(self) -> bool:
        return self.blocked_reason == BlockedReason.NONE


class SlotGrid(BaseModel):
    barber_id: Optional[str] = None
    date: Date
    duration_minutes: int
    state: DayState
    slots: List[Slot] = []
