"""Decimal scaling and fiat valuation of raw token amounts.

All arithmetic runs in VALUATION_CONTEXT, whose precision covers a full
uint256 amount multiplied by a price, so scaling and multiplication never
round. Rounding to DISPLAY_PLACES happens only in `to_display`.
"""

from decimal import ROUND_HALF_EVEN, Context, Decimal

from portfolio_engine.core.models import RawBalance, ValuedBalance

VALUATION_CONTEXT = Context(prec=160, rounding=ROUND_HALF_EVEN)

DISPLAY_PLACES = 8
_DISPLAY_QUANTUM = Decimal(1).scaleb(-DISPLAY_PLACES)


def _require_decimal(name: str, value: object) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        msg = f"{name} must be a Decimal, int or str, not {type(value).__name__}"
        raise TypeError(msg)
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def scale(raw_amount: int, decimals: int) -> Decimal:
    """
    Convert a raw integer amount into token units.

    Parameters
    ----------
    raw_amount : int
        Amount in the token's smallest unit
    decimals : int
        Token decimals

    Returns
    -------
    Decimal
        raw_amount / 10**decimals, exact

    Examples
    --------
    >>> scale(1_500_000, 6)
    Decimal('1.500000')

    """
    if isinstance(raw_amount, bool) or not isinstance(raw_amount, int):
        msg = f"raw_amount must be an int, not {type(raw_amount).__name__}"
        raise TypeError(msg)
    if decimals < 0:
        msg = f"decimals must be non-negative, got {decimals}"
        raise ValueError(msg)
    return VALUATION_CONTEXT.scaleb(Decimal(raw_amount), -decimals)


def value(scaled_amount: Decimal, unit_price: Decimal) -> Decimal:
    """
    Fiat value of a scaled amount at a unit price, at full precision.

    Raises
    ------
    TypeError
        If either argument is a binary float

    """
    amount = _require_decimal("scaled_amount", scaled_amount)
    price = _require_decimal("unit_price", unit_price)
    return VALUATION_CONTEXT.multiply(amount, price)


def to_display(amount: Decimal) -> Decimal:
    """Round a money-bearing figure to DISPLAY_PLACES fractional digits."""
    return _require_decimal("amount", amount).quantize(_DISPLAY_QUANTUM, context=VALUATION_CONTEXT)


def value_balance(raw: RawBalance, unit_price: Decimal | None, cycle_id: str | None = None) -> ValuedBalance:
    """
    Scale and price one raw balance.

    Parameters
    ----------
    raw : RawBalance
        Raw balance with its token descriptor
    unit_price : Decimal | None
        Unit price from the same cycle, None when unavailable
    cycle_id : str | None
        Refresh cycle identifier

    Returns
    -------
    ValuedBalance
        Valued balance; fiat_value is None when unit_price is None

    """
    scaled = scale(raw.amount, raw.token.decimals)
    fiat = value(scaled, unit_price) if unit_price is not None else None
    return ValuedBalance(
        raw=raw,
        scaled_amount=scaled,
        unit_price=unit_price,
        fiat_value=fiat,
        cycle_id=cycle_id,
    )
