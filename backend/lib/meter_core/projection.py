# backend/lib/meter_core/projection.py
from datetime import timedelta
from typing import Iterable, Iterator

from .models import ProjectionPoint, Reading
from .processor import days_between, sort_readings


def calculate_projection(readings: Iterable[Reading], horizon_days: int) -> Iterator[ProjectionPoint]:
    """
    Extrapolates the meter value day by day from the two most recent
    readings. The first point is the last reading itself, followed by one
    point per day up to horizon_days ahead.

    Yields nothing with fewer than two readings or when the two most recent
    readings share a timestamp.
    """
    ordered = sort_readings(readings)
    if len(ordered) < 2:
        return

    prev, last = ordered[-2], ordered[-1]
    interval_days = days_between(prev.date, last.date)
    if interval_days <= 0:
        return

    velocity = (last.value - prev.value) / interval_days

    yield ProjectionPoint(date=last.date, value=last.value)
    for i in range(1, horizon_days + 1):
        yield ProjectionPoint(date=last.date + timedelta(days=i), value=last.value + velocity * i)
