from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, field_serializer

from treasury_ledger.domain.models.amount import canonical_decimal


class BalanceSnapshotResponse(BaseModel):
    timestamp: datetime
    balance: Decimal

    model_config = {"from_attributes": True}

    @field_serializer("balance")
    def serialize_balance(self, value: Decimal) -> str:
        return canonical_decimal(value)
