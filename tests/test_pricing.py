"""Unit tests for the pure pricing calculator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from stockbill import pricing
from stockbill.constants import DiscountType
from stockbill.errors import InvalidInputError


def line(price: str, quantity: int, tax: str = "0") -> pricing.PricingLine:
    return pricing.PricingLine(unit_price=Decimal(price), quantity=quantity, tax_pct=Decimal(tax))


def test_flat_discount_with_tax():
    """Two units at 10.00 with 5% tax and a 1.00 flat discount total 20.00."""

    breakdown = pricing.price_lines(
        [line("10.00", 2, "5")],
        pricing.DiscountSpec(Decimal("1.00"), DiscountType.FLAT),
    ).rounded()

    assert breakdown.subtotal == Decimal("20.00")
    assert breakdown.tax_amount == Decimal("1.00")
    assert breakdown.discount_amount == Decimal("1.00")
    assert breakdown.total == Decimal("20.00")
    assert breakdown.line_totals == (Decimal("21.00"),)


def test_percentage_discount_applies_to_pre_tax_subtotal():
    """A 10% discount on a 50.00 untaxed subtotal removes 5.00."""

    breakdown = pricing.price_lines(
        [line("25.00", 2)],
        pricing.DiscountSpec(Decimal("10"), DiscountType.PERCENTAGE),
    ).rounded()

    assert breakdown.discount_amount == Decimal("5.00")
    assert breakdown.total == Decimal("45.00")


def test_percentage_discount_ignores_tax_when_computing_amount():
    """Tax never contributes to the percentage discount base."""

    breakdown = pricing.price_lines(
        [line("100.00", 1, "18")],
        pricing.DiscountSpec(Decimal("50"), DiscountType.PERCENTAGE),
    ).rounded()

    assert breakdown.discount_amount == Decimal("50.00")
    assert breakdown.total == Decimal("68.00")


def test_rounded_total_reconciles_with_rounded_components():
    """The persisted total always equals subtotal + tax - discount exactly."""

    breakdown = pricing.price_lines(
        [line("0.335", 3, "7.5"), line("1.105", 1, "12.5")],
        pricing.DiscountSpec(Decimal("3.3"), DiscountType.PERCENTAGE),
    ).rounded()

    assert breakdown.total == breakdown.subtotal + breakdown.tax_amount - breakdown.discount_amount
    for value in (breakdown.subtotal, breakdown.tax_amount, breakdown.discount_amount, breakdown.total):
        assert value == value.quantize(Decimal("0.01"))


def test_round_money_uses_half_up():
    """Half-cent values round away from zero."""

    assert pricing.round_money(Decimal("0.125")) == Decimal("0.13")
    assert pricing.round_money(Decimal("2.675")) == Decimal("2.68")
    assert pricing.round_money(Decimal("0.124")) == Decimal("0.12")


def test_total_is_not_clamped_when_discount_exceeds_amount():
    """A flat discount larger than subtotal plus tax yields a negative total."""

    breakdown = pricing.price_lines(
        [line("5.00", 1)],
        pricing.DiscountSpec(Decimal("8.00"), DiscountType.FLAT),
    ).rounded()

    assert breakdown.total == Decimal("-3.00")


def test_empty_line_list_is_rejected():
    """Pricing nothing is an input error."""

    with pytest.raises(InvalidInputError) as excinfo:
        pricing.price_lines([])
    assert excinfo.value.field == "items"


@pytest.mark.parametrize(
    "discount",
    [
        pricing.DiscountSpec(Decimal("-1"), DiscountType.FLAT),
        pricing.DiscountSpec(Decimal("100.01"), DiscountType.PERCENTAGE),
    ],
)
def test_invalid_discounts_are_rejected(discount):
    """Negative discounts and percentages above 100 are refused."""

    with pytest.raises(InvalidInputError) as excinfo:
        pricing.price_lines([line("10.00", 1)], discount)
    assert excinfo.value.field == "discount"


def test_full_percentage_discount_is_allowed():
    """A 100% discount leaves only the tax payable."""

    breakdown = pricing.price_lines(
        [line("10.00", 1, "10")],
        pricing.DiscountSpec(Decimal("100"), DiscountType.PERCENTAGE),
    ).rounded()

    assert breakdown.total == Decimal("1.00")


def test_non_positive_quantity_is_rejected():
    """Lines must carry at least one unit."""

    with pytest.raises(InvalidInputError):
        pricing.price_lines([line("10.00", 0)])


@pytest.mark.parametrize("raw", [None, True, "abc", "NaN", "Infinity"])
def test_to_decimal_rejects_non_numbers(raw):
    """Only finite numeric input converts to Decimal."""

    with pytest.raises(InvalidInputError):
        pricing.to_decimal(raw, "amount")


def test_to_decimal_accepts_strings_and_ints():
    """Textual and integer amounts convert without float noise."""

    assert pricing.to_decimal(" 12.50 ", "amount") == Decimal("12.50")
    assert pricing.to_decimal(3, "amount") == Decimal("3")
