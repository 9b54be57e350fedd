from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.balance_change import BalanceChange
from treasury_ledger.domain.enums import ReservedCounterparty


class BalanceChangeRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _pair(self, account_id: str, token_id: str):
        return select(BalanceChange).where(
            BalanceChange.account_id == account_id,
            BalanceChange.token_id == token_id,
        )

    async def latest(self, account_id: str, token_id: str) -> Optional[BalanceChange]:
        result = await self._session.execute(
            self._pair(account_id, token_id).order_by(BalanceChange.block_height.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def earliest(self, account_id: str, token_id: str) -> Optional[BalanceChange]:
        result = await self._session.execute(
            self._pair(account_id, token_id).order_by(BalanceChange.block_height.asc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_at(self, account_id: str, token_id: str, block_height: int) -> Optional[BalanceChange]:
        result = await self._session.execute(
            self._pair(account_id, token_id).where(BalanceChange.block_height == block_height)
        )
        return result.scalar_one_or_none()

    async def count(self, account_id: str, token_id: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(BalanceChange)
            .where(BalanceChange.account_id == account_id, BalanceChange.token_id == token_id)
        )
        return result.scalar_one()

    async def list_chain(self, account_id: str, token_id: str) -> list[BalanceChange]:
        result = await self._session.execute(
            self._pair(account_id, token_id).order_by(BalanceChange.block_height.asc())
        )
        return list(result.scalars().all())

    async def known_tokens(self, account_id: str) -> list[str]:
        result = await self._session.execute(
            select(BalanceChange.token_id)
            .where(BalanceChange.account_id == account_id)
            .distinct()
            .order_by(BalanceChange.token_id)
        )
        return list(result.scalars().all())

    async def distinct_counterparties(self, account_id: str, token_id: str, limit: int = 100) -> list[str]:
        """Real accounts seen as counterparties of a pair (reserved values excluded)."""
        reserved = [r.value for r in ReservedCounterparty]
        result = await self._session.execute(
            select(BalanceChange.counterparty)
            .where(
                BalanceChange.account_id == account_id,
                BalanceChange.token_id == token_id,
                BalanceChange.counterparty.not_in(reserved),
            )
            .distinct()
            .order_by(BalanceChange.counterparty)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_blocks(self, account_id: str, token_id: str, exclude_counterparties: list[str] | None = None) -> list[int]:
        query = select(BalanceChange.block_height).where(
            BalanceChange.account_id == account_id,
            BalanceChange.token_id == token_id,
        )
        if exclude_counterparties:
            query = query.where(BalanceChange.counterparty.not_in(exclude_counterparties))
        result = await self._session.execute(query.order_by(BalanceChange.block_height.asc()))
        return list(result.scalars().all())

    async def insert(self, change: BalanceChange) -> bool:
        """Insert one record. Returns False when (account, block, token) is already recorded."""
        change.validate_consistent()
        existing = await self.get_at(change.account_id, change.token_id, change.block_height)
        if existing is not None:
            return False
        self._session.add(change)
        try:
            await self._session.flush()
        except IntegrityError:
            # Concurrent writer recorded the same block first
            await self._session.rollback()
            return False
        return True

    async def list_for_account(
        self,
        account_id: str,
        token_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[BalanceChange], int]:
        base = select(BalanceChange).where(BalanceChange.account_id == account_id)
        count_q = select(func.count()).select_from(BalanceChange).where(BalanceChange.account_id == account_id)

        if token_id:
            base = base.where(BalanceChange.token_id == token_id)
            count_q = count_q.where(BalanceChange.token_id == token_id)

        total_result = await self._session.execute(count_q)
        total = total_result.scalar_one()

        result = await self._session.execute(
            base.order_by(BalanceChange.block_height.desc(), BalanceChange.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def list_in_window(
        self,
        account_id: str,
        start_time: datetime,
        end_time: datetime,
        token_ids: Optional[list[str]] = None,
    ) -> list[BalanceChange]:
        query = select(BalanceChange).where(
            BalanceChange.account_id == account_id,
            BalanceChange.block_time >= start_time,
            BalanceChange.block_time < end_time,
        )
        if token_ids:
            query = query.where(BalanceChange.token_id.in_(token_ids))
        result = await self._session.execute(
            query.order_by(BalanceChange.token_id, BalanceChange.block_height.asc())
        )
        return list(result.scalars().all())

    async def prior_balances(
        self,
        account_id: str,
        before: datetime,
        token_ids: Optional[list[str]] = None,
    ) -> dict[str, Decimal]:
        """Most recent balance_after per token strictly before the given instant."""
        ranked = select(
            BalanceChange.token_id,
            BalanceChange.balance_after,
            func.row_number()
            .over(partition_by=BalanceChange.token_id, order_by=BalanceChange.block_height.desc())
            .label("rn"),
        ).where(
            BalanceChange.account_id == account_id,
            BalanceChange.block_time < before,
        )
        if token_ids:
            ranked = ranked.where(BalanceChange.token_id.in_(token_ids))
        subq = ranked.subquery()
        result = await self._session.execute(
            select(subq.c.token_id, subq.c.balance_after).where(subq.c.rn == 1)
        )
        return {token_id: balance for token_id, balance in result.all()}
