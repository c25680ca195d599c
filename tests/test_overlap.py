# tests/test_overlap.py
from backend.lib.meter_core.models import Contract, ContractPeriod
from backend.lib.meter_core.overlap import check_contract_overlap
from datetime import date


def existing_contract(start=date(2026, 1, 1), end=date(2026, 6, 30), cid="c1", provider="Stadtwerke"):
    return Contract(cid, "m1", provider, start, end, 10.0, 0.3)


def test_detects_overlap():
    conflict = check_contract_overlap(ContractPeriod(date(2026, 3, 1), date(2026, 12, 31)), [existing_contract()])
    assert conflict is not None
    assert conflict.contract.id == "c1"
    assert "Stadtwerke" in conflict.message
    assert "2026-01-01 to 2026-06-30" in conflict.message


def test_adjacent_periods_do_not_overlap():
    candidate = ContractPeriod(date(2026, 7, 1), date(2026, 12, 31))
    assert check_contract_overlap(candidate, [existing_contract()]) is None


def test_shared_boundary_day_overlaps():
    candidate = ContractPeriod(date(2026, 6, 30), date(2026, 12, 31))
    assert check_contract_overlap(candidate, [existing_contract()]) is not None


def test_open_ended_periods():
    open_existing = existing_contract(end=None)
    conflict = check_contract_overlap(ContractPeriod(date(2030, 1, 1), date(2030, 2, 1)), [open_existing])
    assert conflict is not None
    assert "2026-01-01 to present" in conflict.message

    # open-ended candidate reaches every later contract
    later = existing_contract(start=date(2027, 1, 1), end=date(2027, 3, 31))
    assert check_contract_overlap(ContractPeriod(date(2026, 12, 1)), [later]) is not None
    assert check_contract_overlap(ContractPeriod(date(2027, 4, 1)), [later]) is None


def test_exclude_id_skips_contract_being_edited():
    contracts = [existing_contract()]
    candidate = ContractPeriod(date(2026, 2, 1), date(2026, 7, 31))
    assert check_contract_overlap(candidate, contracts, exclude_id="c1") is None
    assert check_contract_overlap(candidate, contracts, exclude_id="other") is not None


def test_no_existing_contracts():
    assert check_contract_overlap(ContractPeriod(date(2026, 1, 1)), []) is None


def test_contract_period_contains():
    period = ContractPeriod(date(2026, 1, 1), date(2026, 6, 30))
    assert period.contains(date(2026, 1, 1))
    assert period.contains(date(2026, 6, 30))
    assert not period.contains(date(2026, 7, 1))
    assert ContractPeriod(date(2026, 1, 1)).contains(date(2999, 1, 1))
    assert ContractPeriod(date(2026, 1, 1)).is_open_ended
