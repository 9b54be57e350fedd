from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.counterparty import Counterparty
from treasury_ledger.domain.enums import CounterpartyType


class CounterpartyRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> Optional[Counterparty]:
        result = await self._session.execute(
            select(Counterparty).where(Counterparty.account_id == account_id)
        )
        return result.scalar_one_or_none()

    async def get_decimals(self, token_id: str) -> Optional[int]:
        result = await self._session.execute(
            select(Counterparty.token_decimals).where(
                Counterparty.account_id == token_id,
                Counterparty.account_type == CounterpartyType.FT_TOKEN.value,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_token(
        self,
        account_id: str,
        decimals: int,
        symbol: Optional[str] = None,
        name: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Counterparty:
        counterparty = await self.get(account_id)
        if counterparty is None:
            counterparty = Counterparty(account_id=account_id)
            self._session.add(counterparty)
        counterparty.account_type = CounterpartyType.FT_TOKEN.value
        counterparty.token_decimals = decimals
        counterparty.token_symbol = symbol
        counterparty.token_name = name
        counterparty.token_icon = icon
        counterparty.last_verified_at = datetime.now(UTC)
        await self._session.flush()
        return counterparty

    async def ensure(self, account_id: str, account_type: CounterpartyType) -> Counterparty:
        """Record a counterparty on first encounter; an existing classification wins."""
        counterparty = await self.get(account_id)
        if counterparty is not None:
            return counterparty
        counterparty = Counterparty(account_id=account_id, account_type=account_type.value)
        self._session.add(counterparty)
        await self._session.flush()
        return counterparty

    async def symbols_for(self, token_ids: list[str]) -> dict[str, Optional[str]]:
        if not token_ids:
            return {}
        result = await self._session.execute(
            select(Counterparty.account_id, Counterparty.token_symbol).where(Counterparty.account_id.in_(token_ids))
        )
        return {account_id: symbol for account_id, symbol in result.all()}

    async def mark_verified(self, account_id: str, account_type: CounterpartyType) -> Counterparty:
        """Record the outcome of probing an account (e.g. it is not a token contract)."""
        counterparty = await self.get(account_id)
        if counterparty is None:
            counterparty = Counterparty(account_id=account_id)
            self._session.add(counterparty)
        if not counterparty.is_token:
            counterparty.account_type = account_type.value
        counterparty.last_verified_at = datetime.now(UTC)
        await self._session.flush()
        return counterparty
