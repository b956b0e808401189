"""Token amount <-> brokerage share quantity.

Protocol rule: one whole token (10**18 base units) is backed by exactly one
share. The ratio is fixed and not configurable per call.
"""

from decimal import Decimal, localcontext

TOKEN_DECIMALS = 18
TOKEN_UNIT = 10**TOKEN_DECIMALS

# Alpaca accepts fractional quantities up to 9 decimal places.
MAX_QUANTITY_DECIMALS = 9

# uint256 has 78 digits; leave headroom so division is exact.
_PRECISION = 100


def token_amount_to_quantity(token_amount: int) -> Decimal:
    """Exact share quantity for a base-unit token amount (no rounding)."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(token_amount) / Decimal(TOKEN_UNIT)


def quantity_decimals(quantity: Decimal) -> int:
    """Number of significant fractional digits."""
    exponent = quantity.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


def format_quantity(quantity: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros ("2", "0.5")."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        text = format(quantity.normalize(), "f")
    return text
