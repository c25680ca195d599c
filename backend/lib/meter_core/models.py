# backend/lib/meter_core/models.py
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class MeterType(str, Enum):
    POWER = "power"
    GAS = "gas"
    WATER = "water"


DEFAULT_UNITS = {
    MeterType.POWER: "kWh",
    MeterType.GAS: "m³",
    MeterType.WATER: "m³",
}


def _parse_iso(value) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid date: {value!r}")
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def to_utc_naive(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are already taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value) -> datetime:
    """
    Accepts a datetime, a date or an ISO 8601 string (trailing 'Z' allowed).
    The result is always a naive UTC datetime so readings from any source
    compare and sort against each other.
    """
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return to_utc_naive(_parse_iso(value))


def parse_date(value) -> date:
    # calendar day as written, no zone conversion
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return _parse_iso(value).date()


def _require(data: Dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise ValueError(f"Missing field(s): {', '.join(missing)}")


@dataclass
class Meter:
    id: str
    name: str
    type: MeterType
    unit: str = ""

    def __post_init__(self):
        self.type = MeterType(self.type)
        if not self.unit:
            self.unit = DEFAULT_UNITS[self.type]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type.value, "unit": self.unit}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Meter":
        _require(data, "id", "name", "type")
        try:
            meter_type = MeterType(str(data["type"]).lower())
        except ValueError:
            raise ValueError(f"Unknown meter type: {data['type']}") from None
        return cls(id=str(data["id"]), name=str(data["name"]), type=meter_type, unit=data.get("unit") or "")


@dataclass
class Reading:
    meter_id: str
    date: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"meter_id": self.meter_id, "date": self.date.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reading":
        _require(data, "meter_id", "date", "value")
        value = float(data["value"])
        if value < 0:
            raise ValueError("value must be >= 0")
        return cls(meter_id=str(data["meter_id"]), date=parse_datetime(data["date"]), value=value)


@dataclass(frozen=True)
class ContractPeriod:
    """
    A contract's validity in calendar days. `end` is inclusive; `end=None`
    means the period is open-ended and covers every day from `start` onward.
    """
    start: date
    end: Optional[date] = None

    @property
    def is_open_ended(self) -> bool:
        return self.end is None

    @property
    def end_exclusive(self) -> Optional[date]:
        """First day no longer covered, or None for open-ended periods."""
        if self.end is None:
            return None
        return self.end + timedelta(days=1)

    def contains(self, day: date) -> bool:
        if day < self.start:
            return False
        return self.end is None or day <= self.end

    def overlaps(self, other: "ContractPeriod") -> bool:
        # A and B overlap if start(A) <= end(B) and end(A) >= start(B); open ends never stop
        starts_before_other_ends = other.end is None or self.start <= other.end
        ends_after_other_starts = self.end is None or self.end >= other.start
        return starts_before_other_ends and ends_after_other_starts

    def describe(self) -> str:
        end = self.end.isoformat() if self.end else "present"
        return f"{self.start.isoformat()} to {end}"


@dataclass
class Contract:
    id: str
    meter_id: str
    provider_name: str
    start_date: date
    end_date: Optional[date]
    base_price: float
    working_price: float

    @property
    def period(self) -> ContractPeriod:
        return ContractPeriod(self.start_date, self.end_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "meter_id": self.meter_id,
            "provider_name": self.provider_name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "base_price": self.base_price,
            "working_price": self.working_price,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contract":
        _require(data, "id", "meter_id", "start_date", "base_price", "working_price")
        start = parse_date(data["start_date"])
        end = parse_date(data["end_date"]) if data.get("end_date") else None
        if end is not None and end < start:
            raise ValueError("end_date must not be before start_date")
        base_price = float(data["base_price"])
        working_price = float(data["working_price"])
        if base_price < 0 or working_price < 0:
            raise ValueError("prices must be >= 0")
        return cls(
            id=str(data["id"]),
            meter_id=str(data["meter_id"]),
            provider_name=str(data.get("provider_name") or ""),
            start_date=start,
            end_date=end,
            base_price=base_price,
            working_price=working_price,
        )


@dataclass(frozen=True)
class ReadingWithDelta:
    meter_id: str
    date: datetime
    value: float
    delta: float

    def to_dict(self) -> Dict[str, Any]:
        return {"meter_id": self.meter_id, "date": self.date.isoformat(), "value": self.value, "delta": self.delta}


@dataclass(frozen=True)
class ConsumptionStats:
    daily_average: float = 0.0
    yearly_projection: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"daily_average": self.daily_average, "yearly_projection": self.yearly_projection}


@dataclass(frozen=True)
class Gap:
    start_date: date
    end_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()}


@dataclass(frozen=True)
class ProjectionPoint:
    date: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "value": self.value}


@dataclass(frozen=True)
class ContractConflict:
    contract: Contract
    message: str


@dataclass(frozen=True)
class PricedSegment:
    start: datetime
    end: datetime
    days: float
    consumption: float
    cost: float
    contract: Optional[Contract] = None

    @property
    def is_covered(self) -> bool:
        return self.contract is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "days": self.days,
            "consumption": self.consumption,
            "cost": self.cost,
            "contract_id": self.contract.id if self.contract else None,
        }


@dataclass(frozen=True)
class IntervalCostBreakdown:
    cost: float = 0.0
    billed_consumption: float = 0.0
    unbilled_consumption: float = 0.0
    segments: List[PricedSegment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": self.cost,
            "billed_consumption": self.billed_consumption,
            "unbilled_consumption": self.unbilled_consumption,
            "segments": [s.to_dict() for s in self.segments],
        }


@dataclass(frozen=True)
class YearStats:
    year: int
    cost: float
    consumption: float

    def to_dict(self) -> Dict[str, Any]:
        return {"year": self.year, "cost": self.cost, "consumption": self.consumption}


@dataclass
class AggregateResult:
    total_yearly_cost: float = 0.0
    per_type_yearly_cost: Dict[str, float] = field(default_factory=dict)
    previous_year_total: float = 0.0
    yearly_history: List[YearStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_yearly_cost": self.total_yearly_cost,
            "per_type_yearly_cost": dict(self.per_type_yearly_cost),
            "previous_year_total": self.previous_year_total,
            "yearly_history": [y.to_dict() for y in self.yearly_history],
        }
