from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.db.models.monitored_account import MonitoredAccount


class MonitoredAccountRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, account_id: str) -> Optional[MonitoredAccount]:
        result = await self._session.execute(
            select(MonitoredAccount).where(MonitoredAccount.account_id == account_id)
        )
        return result.scalar_one_or_none()

    async def list_enabled(self) -> list[MonitoredAccount]:
        """Enabled accounts, never-synced first, then least recently synced."""
        result = await self._session.execute(
            select(MonitoredAccount)
            .where(MonitoredAccount.enabled.is_(True))
            .order_by(MonitoredAccount.last_synced_at.asc().nullsfirst(), MonitoredAccount.account_id)
        )
        return list(result.scalars().all())

    async def list_all(self, enabled: Optional[bool] = None) -> list[MonitoredAccount]:
        query = select(MonitoredAccount)
        if enabled is not None:
            query = query.where(MonitoredAccount.enabled.is_(enabled))
        result = await self._session.execute(query.order_by(MonitoredAccount.account_id))
        return list(result.scalars().all())

    async def upsert(self, account_id: str, enabled: bool = True) -> MonitoredAccount:
        account = await self.get(account_id)
        if account is None:
            account = MonitoredAccount(account_id=account_id, enabled=enabled)
            self._session.add(account)
        else:
            account.enabled = enabled
        await self._session.flush()
        return account

    async def mark_synced(self, account: MonitoredAccount, at: Optional[datetime] = None) -> MonitoredAccount:
        account.last_synced_at = at or datetime.now(UTC)
        await self._session.flush()
        return account

    async def delete(self, account: MonitoredAccount) -> None:
        await self._session.delete(account)
        await self._session.flush()
