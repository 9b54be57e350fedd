"""Find breaks in the balance chain of one (account, asset) pair."""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.db.types import ExactDecimal


@dataclass(frozen=True)
class BalanceGap:
    account_id: str
    token_id: str
    start_block: int  # block of the record before the break
    end_block: int  # block of the record after the break
    expected_before: Decimal  # balance_after of the earlier record
    actual_before: Decimal  # balance_before of the later record


class GapDetector:
    """Single window-function scan: a record whose balance_before differs from
    its predecessor's balance_after marks a gap. The first record of a pair has
    no predecessor and is never a gap."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_gaps(self, account_id: str, token_id: str, up_to_block: int | None = None) -> list[BalanceGap]:
        window = {
            "partition_by": (BalanceChange.account_id, BalanceChange.token_id),
            "order_by": BalanceChange.block_height,
        }
        chain = select(
            BalanceChange.block_height,
            BalanceChange.balance_before,
            func.lag(BalanceChange.block_height).over(**window).label("prev_block_height"),
            func.lag(BalanceChange.balance_after, type_=ExactDecimal).over(**window).label("prev_balance_after"),
        ).where(
            BalanceChange.account_id == account_id,
            BalanceChange.token_id == token_id,
        )
        if up_to_block is not None:
            chain = chain.where(BalanceChange.block_height <= up_to_block)
        chain = chain.subquery()

        result = await self._session.execute(
            select(chain)
            .where(
                chain.c.prev_block_height.is_not(None),
                chain.c.prev_balance_after != chain.c.balance_before,
            )
            .order_by(chain.c.block_height)
        )
        return [
            BalanceGap(
                account_id=account_id,
                token_id=token_id,
                start_block=row.prev_block_height,
                end_block=row.block_height,
                expected_before=row.prev_balance_after,
                actual_before=row.balance_before,
            )
            for row in result.all()
        ]
