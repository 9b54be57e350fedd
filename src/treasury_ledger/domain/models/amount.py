"""Exact decimal arithmetic for on-chain amounts.

The default decimal context keeps 28 significant digits; u128 token balances
have up to 39, so every operation here runs in a wide context instead.
"""

from decimal import Context, Decimal

EXACT_CONTEXT = Context(prec=120)


def raw_to_decimal(raw_amount: str | int, decimals: int) -> Decimal:
    """Convert a raw integer amount in smallest units into a human-readable Decimal.

    raw_to_decimal("2500000", 6) == Decimal("2.5")
    """
    raw = Decimal(str(raw_amount).strip())
    if raw != raw.to_integral_value(context=EXACT_CONTEXT):
        raise ValueError(f"Raw amount must be an integer: {raw_amount!r}")
    return EXACT_CONTEXT.normalize(EXACT_CONTEXT.scaleb(raw, -decimals))


def delta(balance_before: Decimal, balance_after: Decimal) -> Decimal:
    return EXACT_CONTEXT.subtract(balance_after, balance_before)


def canonical_decimal(value: Decimal) -> str:
    """Render without exponent or trailing zeros ("5E+1" -> "50", "2.50" -> "2.5")."""
    normalized = EXACT_CONTEXT.normalize(value)
    if normalized == 0:
        return "0"
    return format(normalized, "f")
