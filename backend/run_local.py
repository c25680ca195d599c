# backend/run_local.py
"""
Prints a quick consumption report for a readings CSV without starting the server.

    python -m backend.run_local tests/sample.csv --days 7
"""
import argparse
from collections import defaultdict
from pathlib import Path

from backend.lib.meter_core.io import parse_csv_string
from backend.lib.meter_core.processor import ConsumptionAnalyzer
from backend.lib.meter_core.projection import calculate_projection


def main(csv_path, days=30):
    text = Path(csv_path).read_text()
    readings = parse_csv_string(text)
    print(f"Parsed {len(readings)} readings")

    by_meter = defaultdict(list)
    for r in readings:
        by_meter[r.meter_id].append(r)

    for meter_id, meter_readings in sorted(by_meter.items()):
        analyzer = ConsumptionAnalyzer(meter_readings)
        print(f"\n{meter_id}")
        for r in analyzer.deltas():
            print(f" - {r.date.isoformat()} : {r.value} (+{r.delta})")
        stats = analyzer.stats()
        print(f" daily average: {stats.daily_average:.3f}")
        print(f" yearly projection: {stats.yearly_projection:.1f}")
        points = list(calculate_projection(meter_readings, days))
        if points:
            print(f" projected in {days} days: {points[-1].value:.1f} on {points[-1].date.date().isoformat()}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("csv", nargs="?", default="tests/sample.csv")
    parser.add_argument("--days", type=int, default=30)
    args = parser.parse_args()
    main(args.csv, args.days)
