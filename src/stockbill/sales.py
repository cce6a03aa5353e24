"""Sale transaction engine.

This module owns the only multi-entity writes in Stockbill. A sale moves
through validate, price, number, and commit inside one
:meth:`~stockbill.storage.Store.transaction`, so either the bill, its items,
the stock decrements, and the ``sale`` ledger entries all land together or
none of them do. Cancellation is the compensating unit: it flips the bill to
``cancelled`` once and posts a ``cancellation`` entry per item that restores
exactly the quantities the sale removed.

Manual stock corrections (:func:`adjust_stock`) and goods-in
(:func:`receive_stock`) reuse the same ledger mechanism without pricing.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from . import ledger, log
from .constants import (
    BillStatus,
    DiscountType,
    MovementType,
    PaymentMethod,
    PaymentStatus,
    SheetName,
)
from .context import RuntimeContext, resolve_timestamp
from .data_manager import Actor, ProductRow, SalesBillItemRow, SalesBillRow
from .errors import (
    AlreadyCancelledError,
    InactiveProductError,
    InsufficientStockError,
    InvalidInputError,
    MissingReferenceError,
)
from .numbering import next_bill_number
from .pricing import DiscountSpec, PricingLine, price_lines, to_decimal, validate_discount


@dataclass(frozen=True)
class SaleLineRequest:
    """One requested cart line."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class SaleCommand:
    """User intent for creating a bill."""

    items: Sequence[SaleLineRequest]
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PAID
    discount: Decimal = Decimal("0")
    discount_type: DiscountType = DiscountType.FLAT
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class BillLine:
    """A persisted bill item together with the product's display fields."""

    item: SalesBillItemRow
    product_name: str
    sku: str


@dataclass(frozen=True)
class BillView:
    """A bill with its items, as returned to callers."""

    bill: SalesBillRow
    items: Tuple[BillLine, ...]
    cashier_name: Optional[str] = None

    @property
    def bill_number(self) -> str:
        return self.bill.bill_number

    @property
    def status(self) -> BillStatus:
        return self.bill.status


@dataclass(frozen=True)
class BillPage:
    """One page of bills, newest first."""

    bills: List[SalesBillRow]
    total: int
    page: int
    pages: int
    filters: Dict[str, object] = field(default_factory=dict)


def _require_positive_int(value: object, field_name: str, message: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(field_name, message)
    return value


def _validate_request(command: SaleCommand) -> Tuple[List[SaleLineRequest], DiscountSpec]:
    """Check the parts of a sale that do not depend on stored state."""

    items = list(command.items or ())
    if not items:
        raise InvalidInputError("items", "At least one item is required")
    if not isinstance(command.payment_method, PaymentMethod):
        raise InvalidInputError("payment_method", "Payment method is required (cash, card, or online)")
    if not isinstance(command.payment_status, PaymentStatus):
        raise InvalidInputError("payment_status", f"Unsupported payment status: {command.payment_status}")
    for line in items:
        _require_positive_int(
            line.quantity,
            "quantity",
            f"Quantity for product {line.product_id} must be a positive whole number",
        )
    discount = DiscountSpec(to_decimal(command.discount, "discount"), command.discount_type)
    validate_discount(discount)
    return items, discount


def _snapshot_cart(context: RuntimeContext, items: Sequence[SaleLineRequest]) -> Dict[int, ProductRow]:
    """Resolve every product and verify the aggregated quantities are on hand.

    Quantities for the same product on several lines are summed before the
    comparison so a split cart cannot oversell.
    """

    products: Dict[int, ProductRow] = {}
    requested: Dict[int, int] = {}
    for line in items:
        product = context.store.get(SheetName.PRODUCTS, line.product_id)
        if product is None:
            log.warning("Rejected sale: product %s not found", line.product_id)
            raise MissingReferenceError("product", line.product_id)
        if not product.is_active:
            log.warning("Rejected sale: product '%s' is inactive", product.sku)
            raise InactiveProductError(product.product_id, product.name)
        products[product.product_id] = product
        requested[product.product_id] = requested.get(product.product_id, 0) + line.quantity

    for product_id, quantity in requested.items():
        product = products[product_id]
        if quantity > product.stock_qty:
            log.warning(
                "Rejected sale: '%s' has %d on hand, %d requested",
                product.sku,
                product.stock_qty,
                quantity,
            )
            raise InsufficientStockError(product.product_id, product.name, product.stock_qty, quantity)
    return products


def create_sale(context: RuntimeContext, command: SaleCommand, actor: Actor) -> BillView:
    """Validate, price, number, and commit a sale as one unit.

    Args:
        context (RuntimeContext): Runtime context holding the store.
        command (SaleCommand): Cart, payment, and discount details.
        actor (Actor): Authenticated user recorded on the bill and ledger.

    Returns:
        BillView: The committed bill with its items.

    Raises:
        InvalidInputError: If the cart, payment fields, or discount are
            malformed.
        MissingReferenceError: If a product does not exist.
        InactiveProductError: If a product is inactive.
        InsufficientStockError: If a product lacks the requested quantity.
    """

    items, discount = _validate_request(command)
    moment = resolve_timestamp(command.timestamp)

    store = context.store
    with store.transaction():
        products = _snapshot_cart(context, items)
        pricing_lines = [
            PricingLine(
                unit_price=products[line.product_id].selling_price,
                quantity=line.quantity,
                tax_pct=products[line.product_id].tax_pct,
            )
            for line in items
        ]
        breakdown = price_lines(pricing_lines, discount).rounded()
        bill_number = next_bill_number(context, moment)

        bill = SalesBillRow(
            bill_id=store.next_id(SheetName.SALES_BILLS),
            bill_number=bill_number,
            sale_date=moment,
            subtotal=breakdown.subtotal,
            tax_amount=breakdown.tax_amount,
            discount=breakdown.discount_amount,
            discount_type=discount.discount_type,
            total=breakdown.total,
            payment_method=command.payment_method,
            payment_status=command.payment_status,
            status=BillStatus.COMPLETED,
            user_id=actor.user_id,
            created_at=moment,
        )
        store.insert(SheetName.SALES_BILLS, bill)

        for line, pricing_line, line_total in zip(items, pricing_lines, breakdown.line_totals):
            store.insert(
                SheetName.SALES_BILL_ITEMS,
                SalesBillItemRow(
                    item_id=store.next_id(SheetName.SALES_BILL_ITEMS),
                    bill_id=bill.bill_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=pricing_line.unit_price,
                    tax_pct=pricing_line.tax_pct,
                    line_total=line_total,
                ),
            )
            ledger.post_movement(
                context,
                line.product_id,
                MovementType.SALE,
                -line.quantity,
                f"Sale: {bill_number}",
                actor,
                timestamp=moment,
            )

        view = get_bill(context, bill.bill_id)

    log.info(
        "Recorded sale %s by user %d (%d lines, total=%s)",
        bill_number,
        actor.user_id,
        len(items),
        bill.total,
    )
    return view


def cancel_sale(
    context: RuntimeContext,
    bill_id: int,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> BillView:
    """Cancel a completed bill and return its stock to inventory.

    The bill and its items are kept; only the status changes. Each item gets
    a ``cancellation`` ledger entry restoring its quantity.

    Raises:
        MissingReferenceError: If ``bill_id`` is unknown.
        AlreadyCancelledError: If the bill was cancelled before.
    """

    moment = resolve_timestamp(timestamp)
    store = context.store
    with store.transaction():
        bill = store.get(SheetName.SALES_BILLS, bill_id)
        if bill is None:
            log.warning("Cancellation failed: bill %s not found", bill_id)
            raise MissingReferenceError("bill", bill_id)
        if bill.status is BillStatus.CANCELLED:
            log.warning("Cancellation rejected: bill %s already cancelled", bill.bill_number)
            raise AlreadyCancelledError(bill.bill_number)

        store.replace(SheetName.SALES_BILLS, replace(bill, status=BillStatus.CANCELLED))
        items = bill_items(context, bill_id)
        for item in items:
            ledger.post_movement(
                context,
                item.product_id,
                MovementType.CANCELLATION,
                item.quantity,
                f"Cancellation: {bill.bill_number}",
                actor,
                timestamp=moment,
            )
        view = get_bill(context, bill_id)

    log.info("Cancelled bill %s by user %d (%d items restocked)", bill.bill_number, actor.user_id, len(items))
    return view


def adjust_stock(
    context: RuntimeContext,
    product_id: int,
    quantity_change: int,
    reason: str,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Apply a manual stock correction through the ledger.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        InvalidInputError: If the reason is blank, the change is not a
            non-zero whole number, or the result would be negative.
    """

    if not reason or not reason.strip():
        raise InvalidInputError("reason", "A reason is required for stock adjustments")
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int) or quantity_change == 0:
        raise InvalidInputError("quantity_change", "Quantity change must be a non-zero whole number")

    product, movement = ledger.post_movement(
        context,
        product_id,
        MovementType.ADJUSTMENT,
        quantity_change,
        reason.strip(),
        actor,
        timestamp=timestamp,
    )
    log.info(
        "Adjusted stock of '%s' by %+d (now %d, movement %d)",
        product.sku,
        quantity_change,
        product.stock_qty,
        movement.movement_id,
    )
    return product


def receive_stock(
    context: RuntimeContext,
    product_id: int,
    quantity: int,
    actor: Actor,
    *,
    reason: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Record goods received from a supplier as a ``purchase`` movement.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        InvalidInputError: If ``quantity`` is not a positive whole number.
    """

    _require_positive_int(quantity, "quantity", "Received quantity must be a positive whole number")
    product, _movement = ledger.post_movement(
        context,
        product_id,
        MovementType.PURCHASE,
        quantity,
        reason.strip() if reason and reason.strip() else "Stock received",
        actor,
        timestamp=timestamp,
    )
    log.info("Received %d units of '%s' (now %d)", quantity, product.sku, product.stock_qty)
    return product


def bill_items(context: RuntimeContext, bill_id: int) -> List[SalesBillItemRow]:
    return context.store.rows(SheetName.SALES_BILL_ITEMS, lambda item: item.bill_id == bill_id)


def get_bill(context: RuntimeContext, bill_id: int) -> BillView:
    """Return a bill with its items and display names.

    Raises:
        MissingReferenceError: If ``bill_id`` is unknown.
    """

    with context.store.reading() as store:
        bill = store.get(SheetName.SALES_BILLS, bill_id)
        if bill is None:
            raise MissingReferenceError("bill", bill_id)
        lines = []
        for item in bill_items(context, bill_id):
            product = store.get(SheetName.PRODUCTS, item.product_id)
            lines.append(
                BillLine(
                    item=item,
                    product_name=product.name if product else "",
                    sku=product.sku if product else "",
                )
            )
        cashier = store.get(SheetName.USERS, bill.user_id)
    return BillView(bill=bill, items=tuple(lines), cashier_name=cashier.name if cashier else None)


def list_bills(
    context: RuntimeContext,
    *,
    on_date: Optional[date] = None,
    status: Optional[BillStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> BillPage:
    """Page through bills newest first, optionally filtered by date and status."""

    _require_positive_int(page, "page", "page must be a positive whole number")
    _require_positive_int(limit, "limit", "limit must be a positive whole number")

    def matches(bill: SalesBillRow) -> bool:
        if on_date is not None and bill.sale_date.date() != on_date:
            return False
        if status is not None and bill.status is not status:
            return False
        return True

    bills = sorted(
        context.store.rows(SheetName.SALES_BILLS, matches),
        key=lambda bill: (bill.sale_date, bill.bill_id),
        reverse=True,
    )
    offset = (page - 1) * limit
    return BillPage(
        bills=bills[offset : offset + limit],
        total=len(bills),
        page=page,
        pages=math.ceil(len(bills) / limit),
        filters={"on_date": on_date, "status": status},
    )
