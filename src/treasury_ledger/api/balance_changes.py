import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.api.deps import get_db, get_history_sources, get_rpc, get_settings
from treasury_ledger.api.schemas.balance_changes import (
    AccountSyncResult,
    BalanceChangeList,
    BalanceChangeResponse,
    CollectResponse,
)
from treasury_ledger.config import Settings
from treasury_ledger.db.repos.balance_change_repo import BalanceChangeRepo
from treasury_ledger.infra.blockchain.near.rpc_client import NearRPCClient
from treasury_ledger.ledger.account_monitor import AccountMonitor
from treasury_ledger.ledger.coordinator import TransferHistorySource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/balance-changes", tags=["balance-changes"])

DbDep = Annotated[AsyncSession, Depends(get_db)]


@router.get("", response_model=BalanceChangeList)
async def list_balance_changes(
    db: DbDep,
    account_id: str = Query(..., description="Monitored account"),
    token_id: Optional[str] = Query(None, description="Restrict to one asset"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> BalanceChangeList:
    repo = BalanceChangeRepo(db)
    rows, total = await repo.list_for_account(account_id, token_id=token_id, limit=limit, offset=offset)
    return BalanceChangeList(
        changes=[BalanceChangeResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/collect", response_model=CollectResponse)
async def collect_balance_changes(
    db: DbDep,
    account_id: Optional[str] = Query(None, description="Only this monitored account"),
    rpc: NearRPCClient = Depends(get_rpc),
    settings: Settings = Depends(get_settings),
    history_sources: list[TransferHistorySource] = Depends(get_history_sources),
) -> CollectResponse:
    """Run one monitor cycle now. Responds 502 when any account or asset failed.

    Failing to read the chain head aborts the cycle; the app-level upstream
    handler turns that into a 502 as well.
    """
    monitor = AccountMonitor.build(db, rpc, settings, history_sources)
    reports = await monitor.run_cycle(account_ids=[account_id] if account_id else None)
    logger.info("Collection cycle finished for %d accounts", len(reports))

    accounts = [
        AccountSyncResult(
            account_id=r.account_id,
            assets_processed=r.assets_processed,
            records_created=r.records_created,
            errors=r.errors,
        )
        for r in reports
    ]
    if any(not r.ok for r in reports):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"status": "error", "accounts": [a.model_dump() for a in accounts]},
        )
    return CollectResponse(status="ok", accounts=accounts)
