"""Amount conversions between decimal major units and gateway minor units."""

from decimal import ROUND_HALF_UP, Decimal


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Convert e.g. `100.50` to `10050`, rounding half-up to the cent."""

    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert e.g. `10050` to `Decimal("100.50")`."""

    return (Decimal(amount) / 100).quantize(Decimal("0.01"))
