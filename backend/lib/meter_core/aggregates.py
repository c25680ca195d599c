# backend/lib/meter_core/aggregates.py
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .estimator import BillingEstimator
from .models import AggregateResult, Contract, Meter, Reading, YearStats
from .processor import calculate_stats, sort_readings


def _group_by_meter(items) -> Dict[str, list]:
    grouped = defaultdict(list)
    for item in items:
        grouped[item.meter_id].append(item)
    return grouped


def _consumption_between(ordered: List[Reading], first: Reading, last: Reading) -> float:
    # sum of reset-tolerant deltas, same rule as calculate_deltas
    window = [r for r in ordered if first.date <= r.date <= last.date]
    return sum(max(0.0, b.value - a.value) for a, b in zip(window, window[1:]))


def _yearly_history(ordered: List[Reading], estimator: BillingEstimator, until_year: int) -> Dict[int, YearStats]:
    """
    Per calendar year: consumption between the first reading on/after
    January 1st and the last reading on/before December 31st, priced over
    that span.
    """
    history = {}
    for year in range(ordered[0].date.year, until_year + 1):
        if not any(r.date.year == year for r in ordered):
            continue
        in_or_after = [r for r in ordered if r.date.year >= year]
        in_or_before = [r for r in ordered if r.date.year <= year]
        if len(in_or_before) < 2:
            continue
        first, last = in_or_after[0], in_or_before[-1]
        if first is last:
            continue
        consumption = _consumption_between(ordered, first, last)
        cost = estimator.interval_cost(first.date, last.date, consumption)
        history[year] = YearStats(year=year, cost=cost, consumption=consumption)
    return history


def calculate_aggregates(meters: Iterable[Meter], readings: Iterable[Reading],
                         contracts: Iterable[Contract], now: Optional[datetime] = None) -> AggregateResult:
    """
    Projects next year's cost per meter from its average consumption and the
    contract active on `now`, summed per meter type. Meters with fewer than
    two readings or without an active contract contribute nothing.
    """
    now = now or datetime.now()
    readings_by_meter = _group_by_meter(readings)
    contracts_by_meter = _group_by_meter(contracts)

    per_type = {}
    history_costs = defaultdict(float)
    history_consumption = defaultdict(float)

    for meter in meters:
        per_type.setdefault(meter.type.value, 0.0)
        ordered = sort_readings(readings_by_meter.get(meter.id, []))
        if len(ordered) < 2:
            continue
        estimator = BillingEstimator(contracts_by_meter.get(meter.id, []))

        yearly_projection = calculate_stats(ordered).yearly_projection
        per_type[meter.type.value] += estimator.estimate_yearly_cost(yearly_projection, now)

        for year, stats in _yearly_history(ordered, estimator, now.year).items():
            history_costs[year] += stats.cost
            history_consumption[year] += stats.consumption

    yearly_history = [
        YearStats(year=year, cost=history_costs[year], consumption=history_consumption[year])
        for year in sorted(history_costs)
    ]
    return AggregateResult(
        total_yearly_cost=sum(per_type.values()),
        per_type_yearly_cost=per_type,
        previous_year_total=history_costs.get(now.year - 1, 0.0),
        yearly_history=yearly_history,
    )
