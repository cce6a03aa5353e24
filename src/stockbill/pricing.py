"""Pure pricing calculator for bills.

Amounts are carried at full :class:`~decimal.Decimal` precision through the
calculation. :meth:`PriceBreakdown.rounded` applies half-up rounding to two
decimals once, at the point the figures are persisted, and derives the total
from the rounded components so a stored bill always reconciles exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Tuple

from .constants import CURRENCY_QUANTUM, DiscountType
from .errors import InvalidInputError

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: object, field: str) -> Decimal:
    """Coerce user input into a finite :class:`Decimal` or raise ``InvalidInputError``."""

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise InvalidInputError(field, f"{field} must be a number")
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidInputError(field, f"{field} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidInputError(field, f"{field} must be a finite number")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round a currency amount to cents using half-up rounding."""

    return value.quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingLine:
    """One cart line as seen by the calculator."""

    unit_price: Decimal
    quantity: int
    tax_pct: Decimal

    @property
    def line_subtotal(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def line_tax(self) -> Decimal:
        return self.line_subtotal * self.tax_pct / HUNDRED

    @property
    def line_total(self) -> Decimal:
        return self.line_subtotal + self.line_tax


@dataclass(frozen=True)
class DiscountSpec:
    """Bill-level discount as requested by the caller."""

    amount: Decimal = ZERO
    discount_type: DiscountType = DiscountType.FLAT


@dataclass(frozen=True)
class PriceBreakdown:
    """Totals for a cart. Unrounded until :meth:`rounded` is called."""

    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    line_totals: Tuple[Decimal, ...]

    def rounded(self) -> "PriceBreakdown":
        subtotal = round_money(self.subtotal)
        tax_amount = round_money(self.tax_amount)
        discount_amount = round_money(self.discount_amount)
        return PriceBreakdown(
            subtotal=subtotal,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            total=subtotal + tax_amount - discount_amount,
            line_totals=tuple(round_money(value) for value in self.line_totals),
        )


def validate_discount(discount: DiscountSpec) -> None:
    """Reject discounts that are negative, mistyped, or above 100 percent."""

    if not isinstance(discount.discount_type, DiscountType):
        raise InvalidInputError("discount_type", f"Unsupported discount type: {discount.discount_type}")
    if discount.amount < ZERO:
        raise InvalidInputError("discount", "Discount must be zero or positive")
    if discount.discount_type is DiscountType.PERCENTAGE and discount.amount > HUNDRED:
        raise InvalidInputError("discount", "Percentage discount cannot exceed 100")


def compute_discount(subtotal: Decimal, discount: DiscountSpec) -> Decimal:
    """Return the discount amount; percentages apply to the pre-tax subtotal."""

    if discount.discount_type is DiscountType.PERCENTAGE:
        return subtotal * discount.amount / HUNDRED
    return discount.amount


def price_lines(lines: Iterable[PricingLine], discount: DiscountSpec = DiscountSpec()) -> PriceBreakdown:
    """Compute subtotal, tax, discount, and total for ``lines``.

    The total is not clamped: a flat discount larger than
    subtotal plus tax yields a negative total.

    Raises:
        InvalidInputError: If no lines are supplied, a line has a non-positive
            quantity, or the discount is invalid.
    """

    lines = list(lines)
    if not lines:
        raise InvalidInputError("items", "At least one item is required")
    for line in lines:
        if line.quantity <= 0:
            raise InvalidInputError("quantity", "Quantity must be greater than zero")
    validate_discount(discount)

    subtotal = sum((line.line_subtotal for line in lines), ZERO)
    tax_amount = sum((line.line_tax for line in lines), ZERO)
    discount_amount = compute_discount(subtotal, discount)
    return PriceBreakdown(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total=subtotal + tax_amount - discount_amount,
        line_totals=tuple(line.line_total for line in lines),
    )
