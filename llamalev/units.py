"""Fixed-point helpers shared by the curve model and the solvers.

On-chain amounts are integers in base units ("raw"); everything presented to
callers is a ``Decimal`` in token units.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext
from typing import Union

Amount = Union[Decimal, int, float, str]

WAD = 10**18
# Enough significant digits for 18-decimal amounts of any realistic supply.
PRECISION = 78


def to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr keeps the shortest round-tripping form (0.1 -> "0.1").
        return Decimal(repr(value))
    return Decimal(value)


def parse_units(value: Amount, decimals: int = 18) -> int:
    """Token units -> raw integer, truncating digits beyond ``decimals``."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        scaled = to_decimal(value) * (Decimal(10) ** decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_units(raw: int, decimals: int = 18) -> Decimal:
    """Raw integer -> token units, exact."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return Decimal(int(raw)).scaleb(-decimals)


def quantize(value: Decimal, places: int = 18, rounding: str = ROUND_HALF_UP) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = PRECISION
        return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def divide(numerator: Amount, denominator: Amount) -> Decimal:
    """Division at engine precision. Raises ``ZeroDivisionError`` on zero."""
    with localcontext() as ctx:
        ctx.prec = PRECISION
        denominator = to_decimal(denominator)
        if denominator == 0:
            raise ZeroDivisionError("division by zero amount")
        return to_decimal(numerator) / denominator


def cut_zeros(value: Decimal) -> str:
    """Render without exponent and without trailing zeros ("1.500" -> "1.5")."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
