from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[int, float, Decimal, str]

_HUNDRED = Decimal(100)


def _decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def is_alternate(currency: str, alternate_currency: str) -> bool:
    return currency.lower() == alternate_currency.lower()


def to_smallest_unit(
    major_amount: Number,
    currency: str,
    alternate_currency: str,
    exchange_rate: Number,
) -> int:
    """Convert an amount in the base currency to the charged smallest unit.

    The input is always denominated in the base currency. When the charge
    currency is the alternate one it is converted at `exchange_rate` first.
    Halves round away from zero.
    """
    rate = _decimal(exchange_rate) if is_alternate(currency, alternate_currency) else Decimal(1)
    amount = _decimal(major_amount) * rate * _HUNDRED
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_unit(
    smallest_amount: int,
    currency: str,
    alternate_currency: str,
    exchange_rate: Number,
) -> Decimal:
    """Inverse of `to_smallest_unit`, back to base-currency major units."""
    rate = _decimal(exchange_rate) if is_alternate(currency, alternate_currency) else Decimal(1)
    return (Decimal(smallest_amount) / _HUNDRED / rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
