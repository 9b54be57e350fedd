from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.api.deps import get_db
from treasury_ledger.api.schemas.monitored_accounts import (
    MonitoredAccountCreate,
    MonitoredAccountList,
    MonitoredAccountResponse,
    MonitoredAccountUpdate,
)
from treasury_ledger.db.repos.monitored_account_repo import MonitoredAccountRepo

router = APIRouter(prefix="/api/monitored-accounts", tags=["monitored-accounts"])

DbDep = Annotated[AsyncSession, Depends(get_db)]


@router.post("", response_model=MonitoredAccountResponse, status_code=status.HTTP_201_CREATED)
async def add_monitored_account(body: MonitoredAccountCreate, db: DbDep) -> MonitoredAccountResponse:
    """Start monitoring an account, or update its enabled flag if already present."""
    repo = MonitoredAccountRepo(db)
    account = await repo.upsert(body.account_id, enabled=body.enabled)
    await db.commit()
    await db.refresh(account)
    return MonitoredAccountResponse.model_validate(account)


@router.get("", response_model=MonitoredAccountList)
async def list_monitored_accounts(
    db: DbDep,
    enabled: Optional[bool] = Query(None, description="Filter by enabled flag"),
) -> MonitoredAccountList:
    repo = MonitoredAccountRepo(db)
    accounts = await repo.list_all(enabled=enabled)
    return MonitoredAccountList(
        accounts=[MonitoredAccountResponse.model_validate(a) for a in accounts],
        total=len(accounts),
    )


@router.patch("/{account_id}", response_model=MonitoredAccountResponse)
async def update_monitored_account(
    account_id: str, body: MonitoredAccountUpdate, db: DbDep
) -> MonitoredAccountResponse:
    repo = MonitoredAccountRepo(db)
    account = await repo.get(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Monitored account not found")
    account.enabled = body.enabled
    await db.commit()
    await db.refresh(account)
    return MonitoredAccountResponse.model_validate(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_monitored_account(account_id: str, db: DbDep) -> None:
    repo = MonitoredAccountRepo(db)
    account = await repo.get(account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Monitored account not found")
    await repo.delete(account)
    await db.commit()
