# backend/lib/meter_core/overlap.py
from typing import Iterable, Optional

from .models import Contract, ContractConflict, ContractPeriod


def check_contract_overlap(candidate: ContractPeriod, existing: Iterable[Contract],
                           exclude_id: Optional[str] = None) -> Optional[ContractConflict]:
    """
    Looks for an existing contract whose period overlaps `candidate`.

    `exclude_id` skips the contract being edited. Returns the first conflict
    (earliest start) with a message suitable for showing to the user, or
    None when the candidate fits.
    """
    for contract in sorted(existing, key=lambda c: c.start_date):
        if exclude_id is not None and contract.id == exclude_id:
            continue
        if contract.period.overlaps(candidate):
            provider = contract.provider_name or "unnamed provider"
            message = (
                f"Overlaps with existing contract ({provider}) for period: "
                f"{contract.period.describe()}. Please adjust the dates to avoid overlap."
            )
            return ContractConflict(contract=contract, message=message)
    return None
