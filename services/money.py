# services/money.py
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from services.errors import ValidationError

CENT = Decimal("0.01")


def D(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    # never pass float directly; stringify first to avoid binary artifacts
    try:
        return Decimal(str(x if x is not None else 0))
    except InvalidOperation:
        raise ValidationError(f"not a monetary amount: {x!r}")


def money(x) -> Decimal:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(x) -> int:
    return int(money(x) * 100)


def from_cents(c) -> Decimal:
    return (Decimal(int(c)) / 100).quantize(CENT)
