# backend/lib/meter_core/processor.py
from collections import defaultdict
from typing import Dict, Iterable, List

from .models import ConsumptionStats, Reading, ReadingWithDelta

SECONDS_PER_DAY = 24 * 60 * 60
DAYS_PER_YEAR = 365.25


def days_between(start, end) -> float:
    """Fractional days from start to end (negative if end comes first)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def sort_readings(readings: Iterable[Reading]) -> List[Reading]:
    # sorted() is stable, so readings sharing a timestamp keep their input order
    return sorted(readings, key=lambda r: r.date)


def _ascending_deltas(readings: Iterable[Reading]) -> List[ReadingWithDelta]:
    ordered = sort_readings(readings)
    result = []
    previous = None
    for r in ordered:
        delta = 0.0 if previous is None else max(0.0, r.value - previous.value)
        result.append(ReadingWithDelta(meter_id=r.meter_id, date=r.date, value=r.value, delta=delta))
        previous = r
    return result


def calculate_deltas(readings: Iterable[Reading]) -> List[ReadingWithDelta]:
    """
    Annotates each reading with the consumption since the previous one.

    Deltas are floored at zero so a replaced or rolled-over meter never
    reports negative consumption. Returned newest first.
    """
    return list(reversed(_ascending_deltas(readings)))


def calculate_daily_average(readings: Iterable[Reading]) -> float:
    with_deltas = _ascending_deltas(readings)
    if len(with_deltas) < 2:
        return 0.0
    days = days_between(with_deltas[0].date, with_deltas[-1].date)
    if days <= 0:
        return 0.0
    return sum(r.delta for r in with_deltas) / days


def calculate_stats(readings: Iterable[Reading]) -> ConsumptionStats:
    daily_average = calculate_daily_average(readings)
    return ConsumptionStats(daily_average=daily_average, yearly_projection=daily_average * DAYS_PER_YEAR)


class ConsumptionAnalyzer:
    def __init__(self, readings: Iterable[Reading]):
        # Keep a private ascending copy; the caller's collection is left alone
        self.readings = sort_readings(readings)

    def deltas(self) -> List[ReadingWithDelta]:
        return calculate_deltas(self.readings)

    def stats(self) -> ConsumptionStats:
        return calculate_stats(self.readings)

    def total_consumption(self) -> float:
        return sum(r.delta for r in _ascending_deltas(self.readings))

    def monthly_consumption(self) -> Dict[str, float]:
        """
        Sums deltas per month ('YYYY-MM'), attributing each delta to the
        month of the reading that closes the interval.
        """
        monthly = defaultdict(float)
        for r in _ascending_deltas(self.readings)[1:]:
            monthly[r.date.strftime("%Y-%m")] += r.delta
        return dict(sorted(monthly.items()))
