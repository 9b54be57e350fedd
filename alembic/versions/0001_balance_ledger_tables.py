"""balance ledger tables

Revision ID: 0001_balance_ledger
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_balance_ledger"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "balance_changes",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("block_height", sa.BigInteger(), nullable=False),
        sa.Column("block_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("token_id", sa.String(128), nullable=False),
        sa.Column("counterparty", sa.String(128), nullable=False),
        sa.Column("amount", sa.Numeric(), nullable=False),
        sa.Column("balance_before", sa.Numeric(), nullable=False),
        sa.Column("balance_after", sa.Numeric(), nullable=False),
        sa.Column("actions", postgresql.JSONB(), nullable=True),
        sa.Column("raw_data", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_balance_changes")),
        sa.UniqueConstraint(
            "account_id", "block_height", "token_id", name="uq_balance_changes_account_block_token"
        ),
        sa.CheckConstraint("block_height > 0", name=op.f("ck_balance_changes_positive_block_height")),
        sa.CheckConstraint("block_timestamp > 0", name=op.f("ck_balance_changes_positive_block_timestamp")),
    )
    op.create_index(op.f("ix_balance_changes_account_id"), "balance_changes", ["account_id"])
    op.create_index(op.f("ix_balance_changes_token_id"), "balance_changes", ["token_id"])
    op.create_index(op.f("ix_balance_changes_counterparty"), "balance_changes", ["counterparty"])
    op.create_index(op.f("ix_balance_changes_block_time"), "balance_changes", ["block_time"])
    op.create_index(
        "ix_balance_changes_account_token_block", "balance_changes", ["account_id", "token_id", "block_height"]
    )

    op.create_table(
        "counterparties",
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("account_type", sa.String(20), nullable=False),
        sa.Column("token_symbol", sa.String(64), nullable=True),
        sa.Column("token_name", sa.Text(), nullable=True),
        sa.Column("token_decimals", sa.SmallInteger(), nullable=True),
        sa.Column("token_icon", sa.Text(), nullable=True),
        sa.Column("discovered_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("account_id", name=op.f("pk_counterparties")),
        sa.CheckConstraint(
            "account_type != 'ft_token' OR token_decimals IS NOT NULL",
            name=op.f("ck_counterparties_ft_token_has_decimals"),
        ),
    )
    op.create_index(op.f("ix_counterparties_account_type"), "counterparties", ["account_type"])

    op.create_table(
        "monitored_accounts",
        sa.Column("account_id", sa.String(128), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("account_id", name=op.f("pk_monitored_accounts")),
    )
    op.create_index(op.f("ix_monitored_accounts_enabled"), "monitored_accounts", ["enabled"])


def downgrade() -> None:
    op.drop_index(op.f("ix_monitored_accounts_enabled"), table_name="monitored_accounts")
    op.drop_table("monitored_accounts")
    op.drop_index(op.f("ix_counterparties_account_type"), table_name="counterparties")
    op.drop_table("counterparties")
    op.drop_index("ix_balance_changes_account_token_block", table_name="balance_changes")
    op.drop_index(op.f("ix_balance_changes_block_time"), table_name="balance_changes")
    op.drop_index(op.f("ix_balance_changes_counterparty"), table_name="balance_changes")
    op.drop_index(op.f("ix_balance_changes_token_id"), table_name="balance_changes")
    op.drop_index(op.f("ix_balance_changes_account_id"), table_name="balance_changes")
    op.drop_table("balance_changes")
