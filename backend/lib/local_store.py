"""
Local file storage used when DynamoDB is not enabled.

Each record type lives in its own JSON Lines file under the data directory
(meters.jsonl, readings.jsonl, contracts.jsonl). Writes append a line; when
the same key appears more than once the last line wins, so re-importing a
CSV updates readings instead of duplicating them. Deletes rewrite the file.
"""
import json
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from backend.lib.meter_core.models import Contract, Meter, Reading, parse_datetime


def _reading_key(data: Dict):
    return data["meter_id"], parse_datetime(data["date"])


class LocalStore:
    name = 'local'

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self.meters_file = self.data_dir / "meters.jsonl"
        self.readings_file = self.data_dir / "readings.jsonl"
        self.contracts_file = self.data_dir / "contracts.jsonl"

    # -------------------------------------------------------------------------
    # File helpers
    # -------------------------------------------------------------------------

    def _load(self, path: Path, key: Callable[[Dict], object]) -> Dict[object, Dict]:
        """Reads a JSONL file into {key: record}, later lines overriding earlier ones."""
        if not path.exists():
            return {}
        seen = {}
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                obj = json.loads(line)
                seen[key(obj)] = obj
        return seen

    def _append(self, path: Path, records: Iterable[Dict]) -> int:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        count = 0
        with path.open("a", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
                count += 1
        return count

    def _rewrite(self, path: Path, records: Iterable[Dict]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
        tmp.replace(path)

    def _remove(self, path: Path, key: Callable[[Dict], object], predicate: Callable[[Dict], bool]) -> int:
        records = self._load(path, key)
        kept = [r for r in records.values() if not predicate(r)]
        removed = len(records) - len(kept)
        if removed:
            self._rewrite(path, kept)
        return removed

    # -------------------------------------------------------------------------
    # Meters
    # -------------------------------------------------------------------------

    def put_meter(self, meter: Meter) -> bool:
        self._append(self.meters_file, [meter.to_dict()])
        return True

    def get_meters(self) -> List[Meter]:
        records = self._load(self.meters_file, lambda d: d["id"])
        return [Meter.from_dict(d) for _, d in sorted(records.items())]

    def get_meter(self, meter_id: str) -> Optional[Meter]:
        record = self._load(self.meters_file, lambda d: d["id"]).get(meter_id)
        return Meter.from_dict(record) if record else None

    def delete_meter(self, meter_id: str) -> bool:
        removed = self._remove(self.meters_file, lambda d: d["id"], lambda d: d["id"] == meter_id)
        if not removed:
            return False
        readings = self._remove(self.readings_file, _reading_key, lambda d: d["meter_id"] == meter_id)
        contracts = self._remove(self.contracts_file, lambda d: d["id"], lambda d: d["meter_id"] == meter_id)
        logger.info("Deleted meter {} with {} readings and {} contracts", meter_id, readings, contracts)
        return True

    # -------------------------------------------------------------------------
    # Readings
    # -------------------------------------------------------------------------

    def put_reading(self, reading: Reading) -> bool:
        self._append(self.readings_file, [reading.to_dict()])
        return True

    def put_readings_batch(self, readings: Iterable[Reading]) -> int:
        return self._append(self.readings_file, (r.to_dict() for r in readings))

    def get_readings(self, meter_id: Optional[str] = None) -> List[Reading]:
        records = self._load(self.readings_file, _reading_key)
        return [
            Reading.from_dict(d) for d in records.values()
            if meter_id is None or d["meter_id"] == meter_id
        ]

    def delete_reading(self, meter_id: str, date) -> bool:
        return bool(self._remove(self.readings_file, _reading_key, lambda d: _reading_key(d) == (meter_id, date)))

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def put_contract(self, contract: Contract) -> bool:
        self._append(self.contracts_file, [contract.to_dict()])
        return True

    def get_contracts(self, meter_id: Optional[str] = None) -> List[Contract]:
        records = self._load(self.contracts_file, lambda d: d["id"])
        return [
            Contract.from_dict(d) for d in records.values()
            if meter_id is None or d["meter_id"] == meter_id
        ]

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        record = self._load(self.contracts_file, lambda d: d["id"]).get(contract_id)
        return Contract.from_dict(record) if record else None

    def delete_contract(self, contract_id: str) -> bool:
        return bool(self._remove(self.contracts_file, lambda d: d["id"], lambda d: d["id"] == contract_id))
