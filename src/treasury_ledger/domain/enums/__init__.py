from treasury_ledger.domain.enums.asset import AssetKind
from treasury_ledger.domain.enums.counterparty import CounterpartyType, ReservedCounterparty
from treasury_ledger.domain.enums.interval import ChartInterval

__all__ = [
    "AssetKind",
    "ChartInterval",
    "CounterpartyType",
    "ReservedCounterparty",
]
