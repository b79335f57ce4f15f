from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date as Date, datetime
from typing import Dict, List


class ChartPoint(BaseModel):
    date: Date
    value: float = 0


class TimeBucket(BaseModel):
    label: str
    count: int = 0


class Dashboard(BaseModel):
    barber_id: str
    start: Date
    end: Date
    total_appointments: int = 0
    total_revenue: float = 0
    status_counts: Dict[str, int] = {}
    daily_revenue: List[ChartPoint] = []
    time_buckets: List[TimeBucket] = []


# The AI endpoint speaks camelCase JSON
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRange(CamelModel):
    start: str = Field(min_length=8)
    end: str = Field(min_length=8)


class DailyRevenue(CamelModel):
    date: str
    value: float


class AppointmentTotals(CamelModel):
    total: int
    cancelled: int
    completed: int
    pending: int


class WeeklyCoachRequest(CamelModel):
    shop_id: str = Field(min_length=1)
    range: DateRange
    currency: str = "TRY"
    daily_revenue: List[DailyRevenue] = Field(min_length=1)
    appointments: AppointmentTotals
    time_buckets: List[TimeBucket] = []


class Insight(CamelModel):
    label: str
    value: str
    detail: str = ""


class CoachWarning(CamelModel):
    text: str


class Action(CamelModel):
    title: str
    why: str
    how: str


class WeeklyCoachData(CamelModel):
    title: str
    insights: List[Insight] = []
    warnings: List[CoachWarning] = []
    actions: List[Action] = []
    one_line_summary: str


class WeeklyCoachResponse(CamelModel):
    cached: bool
    data: WeeklyCoachData
    created_at: datetime
