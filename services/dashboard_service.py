from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Tuple
from crud.appointment_crud import list_barber_appointments_in_range
from schemas.appointment import Appointment, AppointmentStatus
from schemas.dashboard import (
    AppointmentTotals, ChartPoint, Dashboard, DailyRevenue, DateRange, TimeBucket, WeeklyCoachRequest
)
from services.availability import derive_display_status
from services.exceptions import BookingError
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

RANGE_DAYS = {"today": 1, "7d": 7, "30d": 30}

# Revenue counts only appointments that happened or are going to happen
REVENUE_STATUSES = {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED}


def range_window(range_key: str, now: Optional[datetime] = None) -> Tuple[date, date]:
    """First and last day of a named range ending today."""
    if range_key not in RANGE_DAYS:
        raise BookingError("INVALID_RANGE", f"Unknown range '{range_key}'",
                           f"Use one of: {', '.join(RANGE_DAYS)}", status_code=422)
    today = (now or datetime.now()).date()
    return today - timedelta(days=RANGE_DAYS[range_key] - 1), today


def build_dashboard(barber_id: str, appointments: Iterable[Appointment],
                    start: date, end: date, now: datetime) -> Dashboard:
    """Aggregate a barber's appointments between start and end (both inclusive)."""
    status_counts = Counter({status.value: 0 for status in AppointmentStatus})
    revenue_by_day = defaultdict(float)
    hour_counts = Counter()
    total = 0

    for appointment in appointments:
        total += 1
        display_status = derive_display_status(appointment.status, appointment.start_at, now)
        status_counts[display_status.value] += 1

        if display_status == AppointmentStatus.CANCELED:
            continue
        hour_counts[appointment.start_at.hour] += 1

        price = appointment.service_snapshot.price
        if display_status in REVENUE_STATUSES and price > 0:
            revenue_by_day[appointment.start_at.date()] += price

    # Every day of the range shows up, empty days as zero
    daily_revenue = []
    day = start
    while day <= end:
        daily_revenue.append(ChartPoint(date=day, value=revenue_by_day.get(day, 0)))
        day += timedelta(days=1)

    time_buckets = [TimeBucket(label=f"{hour:02d}:00", count=count)
                    for hour, count in sorted(hour_counts.items())]

    return Dashboard(
        barber_id=barber_id,
        start=start,
        end=end,
        total_appointments=total,
        total_revenue=sum(point.value for point in daily_revenue),
        status_counts=dict(status_counts),
        daily_revenue=daily_revenue,
        time_buckets=time_buckets,
    )


async def get_dashboard(barber_id: str, start: date, end: date, now: Optional[datetime] = None) -> Dashboard:
    if start > end:
        raise BookingError("INVALID_RANGE", "Range start must not be after its end", status_code=422)
    now = now or datetime.now()
    appointments = await list_barber_appointments_in_range(
        barber_id,
        datetime.combine(start, time.min),
        datetime.combine(end + timedelta(days=1), time.min),
    )
    logger.info(f"Dashboard for barber {barber_id}: {len(appointments)} appointments from {start} to {end}")
    return build_dashboard(barber_id, appointments, start, end, now)


def build_weekly_payload(shop_id: str, dashboard: Dashboard, currency: Optional[str] = None) -> WeeklyCoachRequest:
    """Request body for the weekly coach built from a dashboard."""
    counts = dashboard.status_counts
    return WeeklyCoachRequest(
        shop_id=shop_id,
        range=DateRange(start=dashboard.start.isoformat(), end=dashboard.end.isoformat()),
        currency=currency or settings.currency,
        daily_revenue=[DailyRevenue(date=point.date.isoformat(), value=point.value)
                       for point in dashboard.daily_revenue],
        appointments=AppointmentTotals(
            total=dashboard.total_appointments,
            cancelled=counts.get(AppointmentStatus.CANCELED.value, 0),
            completed=counts.get(AppointmentStatus.COMPLETED.value, 0),
            pending=counts.get(AppointmentStatus.PENDING.value, 0),
        ),
        time_buckets=dashboard.time_buckets,
    )
