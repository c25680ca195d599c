# backend/lib/meter_core/gaps.py
from datetime import timedelta
from typing import Iterable, List

from .models import Contract, Gap, Reading

ONE_DAY = timedelta(days=1)


def find_contract_gaps(readings: Iterable[Reading], contracts: Iterable[Contract]) -> List[Gap]:
    """
    Returns the day ranges between the first and last reading that no
    contract covers, in chronological order. Gaps are inclusive on both ends
    and never reach outside the reading history.
    """
    reading_days = [r.date.date() for r in readings]
    if not reading_days:
        return []

    start_limit = min(reading_days)
    end_limit = max(reading_days)

    gaps = []
    pointer = start_limit
    for contract in sorted(contracts, key=lambda c: c.start_date):
        period = contract.period
        if period.start > pointer:
            gaps.append(Gap(start_date=pointer, end_date=min(period.start - ONE_DAY, end_limit)))
        if period.is_open_ended:
            # covers everything from here on
            return gaps
        pointer = max(pointer, period.end_exclusive)
        if pointer > end_limit:
            return gaps

    if pointer <= end_limit:
        gaps.append(Gap(start_date=pointer, end_date=end_limit))
    return gaps
