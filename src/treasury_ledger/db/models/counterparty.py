from datetime import datetime
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, SmallInteger, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from treasury_ledger.db.models.balance_change import JsonPayload
from treasury_ledger.db.session import Base
from treasury_ledger.domain.enums import CounterpartyType


class Counterparty(Base):
    """Metadata about an account seen on the other side of a balance change.

    Token contracts (and intents holdings, keyed by their full token id) carry
    the decimals needed to convert raw balances.
    """

    __tablename__ = "counterparties"
    __table_args__ = (
        CheckConstraint(
            "account_type != 'ft_token' OR token_decimals IS NOT NULL",
            name="ft_token_has_decimals",
        ),
    )

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    account_type: Mapped[str] = mapped_column(String(20), default=CounterpartyType.UNKNOWN.value, index=True)
    token_symbol: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    token_name: Mapped[Optional[str]] = mapped_column(Text, default=None)
    token_decimals: Mapped[Optional[int]] = mapped_column(SmallInteger, default=None)
    token_icon: Mapped[Optional[str]] = mapped_column(Text, default=None)
    discovered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=None)
    extra: Mapped[Optional[Any]] = mapped_column("metadata", JsonPayload, default=None)

    @property
    def is_token(self) -> bool:
        return self.account_type == CounterpartyType.FT_TOKEN.value
