from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP, localcontext

from clickerbot.config.settings import MONEY_DECIMALS
from clickerbot.core.errors import ValidationError

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMALS)
ZERO = Decimal(0).quantize(_QUANTUM)


def money(value: float | int | str | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def money_floor(value: float | int | str | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_QUANTUM, rounding=ROUND_DOWN)


def money_str(value: float | int | str | Decimal) -> str:
    # "f" keeps plain notation; str() would render zero as 0E-9.
    return format(money(value), "f")


def money_pow(base: str | Decimal, exponent: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(str(base)) ** int(exponent)


def to_money(raw: object, field: str = "amount") -> Decimal:
    """Parse a client-supplied decimal, rejecting junk and non-finite values."""
    if raw is None or isinstance(raw, bool):
        raise ValidationError(f"{field} is required")
    text = str(raw).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ValidationError(f"Invalid {field}") from None
    if not value.is_finite():
        raise ValidationError(f"Invalid {field}")
    try:
        return money(value)
    except InvalidOperation:
        raise ValidationError(f"Invalid {field}") from None


def parse_amount(raw: object, field: str = "amount") -> Decimal:
    value = to_money(raw, field)
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return value
