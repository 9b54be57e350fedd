from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

DAO_SUFFIX = ".sputnik-dao.near"


class MonitoredAccountCreate(BaseModel):
    account_id: str
    enabled: bool = True

    @field_validator("account_id")
    @classmethod
    def require_dao_account(cls, v: str) -> str:
        v = v.strip().lower()
        if not v.endswith(DAO_SUFFIX) or v == DAO_SUFFIX:
            raise ValueError(f"Only Sputnik DAO accounts ({DAO_SUFFIX}) can be monitored")
        return v


class MonitoredAccountUpdate(BaseModel):
    enabled: bool


class MonitoredAccountResponse(BaseModel):
    account_id: str
    enabled: bool
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MonitoredAccountList(BaseModel):
    accounts: list[MonitoredAccountResponse]
    total: int
