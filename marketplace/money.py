from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize(amount) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(price, quantity: int) -> Decimal:
    return quantize(Decimal(price) * quantity)


def to_minor_units(amount) -> int:
    """Convert a decimal amount (e.g. ``Decimal("19.99")``) to cents (``1999``)."""
    return int(quantize(amount) * 100)


def from_minor_units(value: int) -> Decimal:
    return quantize(Decimal(int(value)) / 100)


def format_amount(amount) -> str:
    return str(quantize(amount))
