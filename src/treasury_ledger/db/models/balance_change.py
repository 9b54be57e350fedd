from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from treasury_ledger.db.session import Base, SerialPrimaryKey, TimestampMixin
from treasury_ledger.db.types import ExactDecimal
from treasury_ledger.domain.enums import ReservedCounterparty
from treasury_ledger.domain.models.amount import delta
from treasury_ledger.exceptions import BalanceError

JsonPayload = sa.JSON().with_variant(JSONB(), "postgresql")


class BalanceChange(SerialPrimaryKey, TimestampMixin, Base):
    """One observed balance change of an (account, token) pair. Append-only.

    Amounts are human-readable (raw / 10^decimals). For a fixed pair ordered by
    block_height, balance_after of each row equals balance_before of the next;
    any break is a gap.
    """

    __tablename__ = "balance_changes"
    __table_args__ = (
        UniqueConstraint("account_id", "block_height", "token_id", name="uq_balance_changes_account_block_token"),
        CheckConstraint("block_height > 0", name="positive_block_height"),
        CheckConstraint("block_timestamp > 0", name="positive_block_timestamp"),
        Index("ix_balance_changes_account_token_block", "account_id", "token_id", "block_height"),
    )

    account_id: Mapped[str] = mapped_column(String(128), index=True)
    block_height: Mapped[int] = mapped_column(BigInteger)
    block_timestamp: Mapped[int] = mapped_column(BigInteger)  # nanoseconds since epoch
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    token_id: Mapped[str] = mapped_column(String(128), index=True)
    counterparty: Mapped[str] = mapped_column(String(128), index=True)
    amount: Mapped[Decimal] = mapped_column(ExactDecimal)
    balance_before: Mapped[Decimal] = mapped_column(ExactDecimal)
    balance_after: Mapped[Decimal] = mapped_column(ExactDecimal)
    actions: Mapped[Optional[Any]] = mapped_column(JsonPayload, default=None)
    raw_data: Mapped[Optional[Any]] = mapped_column(JsonPayload, default=None)

    @property
    def is_snapshot(self) -> bool:
        return self.counterparty == ReservedCounterparty.SNAPSHOT.value

    def validate_consistent(self) -> None:
        """Raise BalanceError unless amount == balance_after - balance_before and a counterparty is set."""
        expected = delta(self.balance_before, self.balance_after)
        if self.amount != expected:
            raise BalanceError(
                f"Inconsistent balance change {self.account_id}/{self.token_id}@{self.block_height}: "
                f"amount={self.amount}, after-before={expected}"
            )
        if not self.counterparty:
            raise BalanceError(f"Empty counterparty on {self.account_id}/{self.token_id}@{self.block_height}")
