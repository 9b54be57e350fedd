"""Column types for exact decimal storage."""

from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.types import TypeDecorator

from treasury_ledger.domain.models.amount import canonical_decimal


class DecimalText(TypeDecorator):
    """Exact decimal stored as canonical text.

    SQLite has no arbitrary-precision numeric type and would round 24-decimal
    native amounts through float. Canonical text keeps equality comparisons in
    SQL exact because every bound value is normalized the same way.
    """

    impl = sa.String(120)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return canonical_decimal(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


# NUMERIC without precision/scale on PostgreSQL keeps every digit
ExactDecimal = sa.Numeric(asdecimal=True).with_variant(DecimalText(), "sqlite")
