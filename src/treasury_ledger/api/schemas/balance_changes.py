from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, field_serializer

from treasury_ledger.domain.models.amount import canonical_decimal


class BalanceChangeResponse(BaseModel):
    id: int
    account_id: str
    token_id: str
    block_height: int
    block_timestamp: int
    block_time: datetime
    counterparty: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    actions: Optional[Any] = None
    raw_data: Optional[Any] = None

    model_config = {"from_attributes": True}

    @field_serializer("amount", "balance_before", "balance_after")
    def serialize_decimal(self, value: Decimal) -> str:
        return canonical_decimal(value)


class BalanceChangeList(BaseModel):
    changes: list[BalanceChangeResponse]
    total: int
    limit: int
    offset: int


class AccountSyncResult(BaseModel):
    account_id: str
    assets_processed: int
    records_created: int
    errors: list[str]


class CollectResponse(BaseModel):
    status: str
    accounts: list[AccountSyncResult]
