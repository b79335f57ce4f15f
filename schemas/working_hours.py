from pydantic import BaseModel, Field, model_validator
from typing import Dict, List, Literal, Union
import re

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$|^24:00$")


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class Break(BaseModel):
    start: str = Field(..., description="Format: HH:MM")
    end: str = Field(..., description="Format: HH:MM")


class OpenDay(BaseModel):
    closed: Literal[False] = False
    start: str = Field(..., description="Format: HH:MM")
    end: str = Field(..., description="Format: HH:MM")
    breaks: List[Break] = []


class ClosedDay(BaseModel):
    closed: Literal[True]


# OpenDay first: a stored {"closed": true} never has start/end
DayHours = Union[OpenDay, ClosedDay]


class WorkingHours(BaseModel):
    """Weekly working hours as stored on the barber document.

    Stored documents are read as-is; consistency problems are left to the
    slot engine, which degrades them to "nothing bookable".
    """
    time_zone: str = "Europe/Istanbul"
    slot_step_minutes: int = 30
    week: Dict[str, DayHours] = Field(
        default_factory=dict,
        description="Map weekday index ('0'=Sunday .. '6'=Saturday) to the day's hours"
    )


class WorkingHoursUpdate(WorkingHours):
    """Working hours submitted from the barber settings screen."""

    @model_validator(mode="after")
    def check_consistency(self):
        if self.slot_step_minutes <= 0:
            raise ValueError("slot_step_minutes must be a positive number of minutes")

        for key, day in self.week.items():
            if key not in {str(i) for i in range(7)}:
                raise ValueError(f"Invalid weekday key '{key}', expected '0'..'6'")
            if isinstance(day, ClosedDay):
                continue

            for value in [day.start, day.end] + [v for b in day.breaks for v in (b.start, b.end)]:
                if not HHMM_PATTERN.match(value):
                    raise ValueError(f"Invalid time '{value}' on day {key}, expected HH:MM")

            start, end = _minutes(day.start), _minutes(day.end)
            if start >= end:
                raise ValueError(f"Day {key}: start must be before end")

            for br in day.breaks:
                br_start, br_end = _minutes(br.start), _minutes(br.end)
                if br_start >= br_end:
                    raise ValueError(f"Day {key}: break {br.start}-{br.end} must start before it ends")
                if br_start < start or br_end > end:
                    raise ValueError(f"Day {key}: break {br.start}-{br.end} is outside working hours")
        return self
