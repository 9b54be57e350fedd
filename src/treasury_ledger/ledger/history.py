"""Balance charts and CSV export built from the ledger."""

import csv
import io
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.db.repos.counterparty_repo import CounterpartyRepo
from treasury_ledger.domain.enums import ChartInterval, ReservedCounterparty
from treasury_ledger.domain.models.amount import canonical_decimal

CSV_HEADER = [
    "block_height",
    "block_time",
    "token_id",
    "token_symbol",
    "counterparty",
    "amount",
    "balance_before",
    "balance_after",
    "transaction_hashes",
    "receipt_id",
]

_EXCLUDED_FROM_EXPORT = {ReservedCounterparty.SNAPSHOT.value, ReservedCounterparty.NOT_REGISTERED.value}


@dataclass(frozen=True)
class BalanceSnapshot:
    timestamp: datetime
    balance: Decimal


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def calculate_snapshots(
    changes: list[BalanceChange],
    prior_balances: dict[str, Decimal],
    start_time: datetime,
    end_time: datetime,
    interval: timedelta,
) -> dict[str, list[BalanceSnapshot]]:
    """Balance per token at start_time, start_time + interval, ... (end exclusive)."""
    by_token: dict[str, list[BalanceChange]] = {token_id: [] for token_id in prior_balances}
    for change in changes:
        by_token.setdefault(change.token_id, []).append(change)

    start_time, end_time = as_utc(start_time), as_utc(end_time)
    result: dict[str, list[BalanceSnapshot]] = {}
    for token_id, token_changes in by_token.items():
        token_changes.sort(key=lambda c: c.block_height)
        balance = prior_balances.get(token_id, Decimal(0))
        idx = 0
        snapshots = []
        current = start_time
        while current < end_time:
            while idx < len(token_changes) and as_utc(token_changes[idx].block_time) <= current:
                balance = token_changes[idx].balance_after
                idx += 1
            snapshots.append(BalanceSnapshot(timestamp=current, balance=balance))
            current += interval
        result[token_id] = snapshots
    return result


class BalanceHistoryService:
    def __init__(self, session: AsyncSession) -> None:
        self._changes = BalanceChangeRepo(session)
        self._counterparties = CounterpartyRepo(session)

    async def chart(
        self,
        account_id: str,
        start_time: datetime,
        end_time: datetime,
        interval: ChartInterval,
        token_ids: list[str] | None = None,
    ) -> dict[str, list[BalanceSnapshot]]:
        prior = await self._changes.prior_balances(account_id, start_time, token_ids)
        changes = await self._changes.list_in_window(account_id, start_time, end_time, token_ids)
        return calculate_snapshots(changes, prior, start_time, end_time, interval.to_timedelta())

    async def export_csv(
        self,
        account_id: str,
        start_time: datetime,
        end_time: datetime,
        token_ids: list[str] | None = None,
    ) -> str:
        changes = await self._changes.list_in_window(account_id, start_time, end_time, token_ids)
        symbols = await self._counterparties.symbols_for(sorted({c.token_id for c in changes}))

        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for change in changes:
            if change.counterparty in _EXCLUDED_FROM_EXPORT:
                continue
            receipts = (change.raw_data or {}).get("receipts", [])
            writer.writerow(
                [
                    change.block_height,
                    as_utc(change.block_time).isoformat(),
                    change.token_id,
                    symbols.get(change.token_id) or "",
                    change.counterparty,
                    canonical_decimal(change.amount),
                    canonical_decimal(change.balance_before),
                    canonical_decimal(change.balance_after),
                    "",
                    receipts[0]["receipt_id"] if receipts else "",
                ]
            )
        return buf.getvalue()
