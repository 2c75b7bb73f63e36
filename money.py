from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_amount(cents: int) -> Decimal:
    return quantize_amount(Decimal(cents) / 100)


def amount_to_cents(value: Decimal) -> int:
    """Convert a decimal currency amount to integer minor units.

    Raises ValueError for anything that is not a finite number.
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
