from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.db.models.counterparty import Counterparty
from treasury_ledger.db.models.monitored_account import MonitoredAccount

__all__ = [
    "BalanceChange",
    "Counterparty",
    "MonitoredAccount",
]
