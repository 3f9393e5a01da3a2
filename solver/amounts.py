"""Fixed-point amount helpers.

All amounts are token-native integers and prices are integers scaled by
1e18. Conversions use integer arithmetic only, never ``float``.
"""
from __future__ import annotations

PRICE_DECIMALS = 18


def compute_quote_amount(
    base_amount: int,
    price_e18: int,
    base_decimals: int,
    quote_decimals: int,
    quote_amount: int = 0,
) -> int:
    """Return the quote-leg payout in quote-token base units.

    A nonzero ``quote_amount`` fixed on the order wins. Otherwise the base
    amount is converted at ``price_e18``:

        base_amount * price_e18 / 10 ** (base_decimals + 18 - quote_decimals)

    The division truncates toward zero, so the solver never pays out more
    than the agreed price.
    """
    if int(quote_amount) != 0:
        return int(quote_amount)

    base_amount = int(base_amount)
    price_e18 = int(price_e18)
    if base_amount < 0 or price_e18 < 0:
        raise ValueError("base_amount and price_e18 must be non-negative")

    exponent = int(base_decimals) + PRICE_DECIMALS - int(quote_decimals)
    numerator = base_amount * price_e18
    if exponent >= 0:
        return numerator // (10 ** exponent)
    return numerator * (10 ** -exponent)


def to_decimal_string(amount: int, decimals: int) -> str:
    """Format a base-unit integer as a plain decimal string.

    ``to_decimal_string(1_500_000, 6) == "1.5"``. Trailing zeros are dropped
    and no exponent notation is ever produced.
    """
    amount = int(amount)
    decimals = int(decimals)
    if decimals < 0:
        raise ValueError("decimals must be non-negative")

    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}"


def format_price_e18(price_e18: int) -> str:
    """Human readable price for log lines."""
    return to_decimal_string(price_e18, PRICE_DECIMALS)
