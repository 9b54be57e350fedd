from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.db.repos.monitored_account_repo import MonitoredAccountRepo

__all__ = ["BalanceChangeRepo", "CounterpartyRepo", "MonitoredAccountRepo"]
