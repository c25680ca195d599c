# backend/lib/meter_core/estimator.py
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from .models import Contract, IntervalCostBreakdown, PricedSegment
from .processor import DAYS_PER_YEAR, days_between

DAYS_PER_MONTH = 30.44  # average month length, used to pro-rate the monthly base price


def cost_for_contract(consumption: float, days: float, contract: Contract) -> float:
    """
    base_price is charged per month (pro-rated over `days`),
    working_price per consumed unit.
    """
    fixed_cost = contract.base_price * (days / DAYS_PER_MONTH)
    variable_cost = contract.working_price * consumption
    return fixed_cost + variable_cost


def find_contract_for_date(contracts: Iterable[Contract], when) -> Optional[Contract]:
    """
    Returns the contract whose period contains the calendar day of `when`
    (a date or datetime). Start and end dates are inclusive.
    """
    day = when.date() if isinstance(when, datetime) else when
    for contract in sorted(contracts, key=lambda c: c.start_date):
        if contract.period.contains(day):
            return contract
    return None


def _day_start(day: date, tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tzinfo)


def _split_interval(start: datetime, end: datetime, contracts: Iterable[Contract]):
    """
    Cuts [start, end) at every contract edge inside it and assigns each piece
    to the earliest-starting contract covering it (or None). Adjacent pieces
    with the same owner are merged.
    """
    tz = start.tzinfo
    bounds = []
    for contract in sorted(contracts, key=lambda c: c.start_date):
        period = contract.period
        c_start = _day_start(period.start, tz)
        c_end = _day_start(period.end_exclusive, tz) if not period.is_open_ended else None
        bounds.append((contract, c_start, c_end))

    cuts = {start, end}
    for _, c_start, c_end in bounds:
        for edge in (c_start, c_end):
            if edge is not None and start < edge < end:
                cuts.add(edge)
    points = sorted(cuts)

    pieces = []
    for seg_start, seg_end in zip(points, points[1:]):
        owner = next(
            (c for c, c_start, c_end in bounds if c_start <= seg_start and (c_end is None or seg_start < c_end)),
            None,
        )
        if pieces and pieces[-1][2] is owner:
            pieces[-1][1] = seg_end
        else:
            pieces.append([seg_start, seg_end, owner])
    return pieces


def price_interval(start: datetime, end: datetime, total_consumption: float,
                   contracts: Iterable[Contract]) -> IntervalCostBreakdown:
    """
    Spreads total_consumption evenly over [start, end) and prices every
    segment against the contract in force. Consumption falling outside all
    contracts is reported as unbilled and costs nothing.
    """
    total_days = days_between(start, end)
    if total_days <= 0:
        return IntervalCostBreakdown()

    segments: List[PricedSegment] = []
    billed = 0.0
    unbilled = 0.0
    for seg_start, seg_end, contract in _split_interval(start, end, contracts):
        seg_days = days_between(seg_start, seg_end)
        seg_consumption = total_consumption * (seg_days / total_days)
        if contract is None:
            unbilled += seg_consumption
            cost = 0.0
        else:
            billed += seg_consumption
            cost = cost_for_contract(seg_consumption, seg_days, contract)
        segments.append(PricedSegment(
            start=seg_start,
            end=seg_end,
            days=seg_days,
            consumption=seg_consumption,
            cost=cost,
            contract=contract,
        ))

    return IntervalCostBreakdown(
        cost=sum(s.cost for s in segments),
        billed_consumption=billed,
        unbilled_consumption=unbilled,
        segments=segments,
    )


def interval_cost(start: datetime, end: datetime, total_consumption: float,
                  contracts: Iterable[Contract]) -> float:
    return price_interval(start, end, total_consumption, contracts).cost


def round_cost(value: float) -> float:
    # round to 2 decimal places (banker's rounding avoided; use ROUND_HALF_UP)
    return float(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


class BillingEstimator:
    def __init__(self, contracts: Iterable[Contract]):
        """
        contracts: the pricing contracts of a single meter
        """
        self.contracts = sorted(contracts, key=lambda c: c.start_date)

    def active_contract(self, on) -> Optional[Contract]:
        return find_contract_for_date(self.contracts, on)

    def interval_cost(self, start: datetime, end: datetime, consumption: float) -> float:
        return interval_cost(start, end, consumption, self.contracts)

    def price_interval(self, start: datetime, end: datetime, consumption: float) -> IntervalCostBreakdown:
        return price_interval(start, end, consumption, self.contracts)

    def estimate_yearly_cost(self, yearly_consumption: float, on) -> float:
        """
        Yearly cost under the contract active on `on`; 0.0 when none applies.
        """
        contract = self.active_contract(on)
        if contract is None:
            return 0.0
        return cost_for_contract(yearly_consumption, DAYS_PER_YEAR, contract)
