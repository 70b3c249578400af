from decimal import Decimal

from chargeflow.common.money import from_minor_units, to_minor_units


def test_to_minor_units_rounds_half_up():
    assert to_minor_units("100.50") == 10050
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units(2500) == 250000
    assert to_minor_units(19.99) == 1999


def test_from_minor_units_keeps_cents():
    assert from_minor_units(10050) == Decimal("100.50")
    assert str(from_minor_units(7)) == "0.07"
