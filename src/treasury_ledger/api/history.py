from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from treasury_ledger.api.deps import get_db
from treasury_ledger.api.schemas.history import BalanceSnapshotResponse
from treasury_ledger.domain.enums import ChartInterval
from treasury_ledger.ledger.history import BalanceHistoryService

router = APIRouter(prefix="/api/balance-history", tags=["balance-history"])

DbDep = Annotated[AsyncSession, Depends(get_db)]


def _check_window(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_time must be after start_time")


@router.get("/chart", response_model=dict[str, list[BalanceSnapshotResponse]])
async def balance_chart(
    db: DbDep,
    account_id: str = Query(...),
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    interval: ChartInterval = Query(ChartInterval.DAILY),
    token_ids: Optional[list[str]] = Query(None, description="Omit for all tokens"),
) -> dict[str, list[BalanceSnapshotResponse]]:
    _check_window(start_time, end_time)
    service = BalanceHistoryService(db)
    snapshots = await service.chart(account_id, start_time, end_time, interval, token_ids)
    return {
        token_id: [BalanceSnapshotResponse.model_validate(s) for s in points]
        for token_id, points in snapshots.items()
    }


@router.get("/csv")
async def balance_csv(
    db: DbDep,
    account_id: str = Query(...),
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    token_ids: Optional[list[str]] = Query(None),
) -> Response:
    _check_window(start_time, end_time)
    service = BalanceHistoryService(db)
    data = await service.export_csv(account_id, start_time, end_time, token_ids)
    filename = f"balance_changes_{account_id}_{start_time.date()}_to_{end_time.date()}.csv"
    return Response(
        content=data,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
