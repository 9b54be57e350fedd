from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from treasury_ledger.db.session import Base, TimestampMixin


class MonitoredAccount(TimestampMixin, Base):
    """An account the monitor loop keeps reconciled. Not part of ledger correctness."""

    __tablename__ = "monitored_accounts"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=None)
