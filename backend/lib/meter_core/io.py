# backend/lib/meter_core/io.py
import csv
from io import StringIO
from typing import Iterable, List

from .models import Reading, parse_datetime

CSV_FIELDS = ("meter_id", "date", "value")


def parse_csv_string(csv_text: str) -> List[Reading]:
    """
    Parse CSV text with header: meter_id,date,value
    Dates should be ISO8601, e.g. 2025-11-01T00:00:00Z
    """
    f = StringIO(csv_text.strip())
    reader = csv.DictReader(f)
    readings = []
    for line_no, row in enumerate(reader, start=2):
        # Basic validation
        if not row.get('meter_id') or not row.get('date') or not row.get('value'):
            raise ValueError(f"Missing field in row {line_no}: {row}")
        try:
            date = parse_datetime(row['date'])
        except ValueError:
            raise ValueError(f"Invalid date in row {line_no}: {row['date']!r}") from None
        try:
            value = float(row['value'])
        except ValueError:
            raise ValueError(f"Invalid value in row {line_no}: {row['value']!r}") from None
        if value < 0:
            raise ValueError(f"value must be >= 0 (row {line_no})")
        readings.append(Reading(meter_id=row['meter_id'].strip(), date=date, value=value))
    return readings


def readings_to_csv(readings: Iterable[Reading]) -> str:
    """Writes readings in the same format parse_csv_string accepts, oldest first."""
    out = StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(CSV_FIELDS)
    for r in sorted(readings, key=lambda r: (r.meter_id, r.date)):
        writer.writerow([r.meter_id, r.date.isoformat(), repr(r.value)])
    return out.getvalue()
