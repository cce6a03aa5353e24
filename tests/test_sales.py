"""Tests for the sale transaction engine, cancellations, and stock corrections."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stockbill import catalog, ledger, sales
from stockbill.constants import (
    BillStatus,
    DiscountType,
    MovementType,
    PaymentMethod,
    PaymentStatus,
    RecordStatus,
    SheetName,
    StockStatus,
)
from stockbill.errors import (
    AlreadyCancelledError,
    InactiveProductError,
    InsufficientStockError,
    InvalidInputError,
    MissingReferenceError,
)

from conftest import FIXED_MOMENT


def sale_command(*lines, **overrides) -> sales.SaleCommand:
    values = dict(
        items=[sales.SaleLineRequest(product_id, quantity) for product_id, quantity in lines],
        payment_method=PaymentMethod.CASH,
        timestamp=FIXED_MOMENT,
    )
    values.update(overrides)
    return sales.SaleCommand(**values)


def table_sizes(context) -> dict:
    return {sheet: len(context.store.rows(sheet)) for sheet in SheetName}


def test_sale_prices_and_persists_bill(context, cashier, make_product):
    """Two units at 10.00 with 5% tax and a flat 1.00 discount."""

    product = make_product(selling_price="10.00", tax_pct="5", stock_qty=8)

    view = sales.create_sale(
        context,
        sale_command((product.product_id, 2), discount=Decimal("1.00"), discount_type=DiscountType.FLAT),
        cashier,
    )

    bill = view.bill
    assert bill.bill_number == "INV-20240315-0001"
    assert (bill.subtotal, bill.tax_amount, bill.discount, bill.total) == (
        Decimal("20.00"),
        Decimal("1.00"),
        Decimal("1.00"),
        Decimal("20.00"),
    )
    assert bill.status is BillStatus.COMPLETED
    assert bill.payment_status is PaymentStatus.PAID
    assert bill.user_id == cashier.user_id
    assert len(view.items) == 1
    item = view.items[0].item
    assert (item.quantity, item.unit_price, item.tax_pct, item.line_total) == (
        2,
        Decimal("10.00"),
        Decimal("5"),
        Decimal("21.00"),
    )
    assert view.items[0].sku == product.sku
    assert catalog.get_product(context, product.product_id).stock_qty == 6

    latest = ledger.history(context, product.product_id)[0]
    assert latest.movement_type is MovementType.SALE
    assert latest.quantity_change == -2
    assert latest.reason == "Sale: INV-20240315-0001"


def test_percentage_discount_sale(context, cashier, make_product):
    """A 10% discount on a 50.00 subtotal gives a 45.00 total."""

    product = make_product(selling_price="25.00", stock_qty=5)

    bill = sales.create_sale(
        context,
        sale_command(
            (product.product_id, 2),
            discount=Decimal("10"),
            discount_type=DiscountType.PERCENTAGE,
        ),
        cashier,
    ).bill

    assert bill.discount == Decimal("5.00")
    assert bill.discount_type is DiscountType.PERCENTAGE
    assert bill.total == Decimal("45.00")


def test_selling_out_then_overselling(context, cashier, make_product):
    """Selling the last units empties stock; one more unit is refused."""

    product = make_product(stock_qty=5, reorder_level=2)
    sales.create_sale(context, sale_command((product.product_id, 5)), cashier)

    emptied = catalog.get_product(context, product.product_id)
    assert emptied.stock_qty == 0
    assert catalog.stock_status(emptied) is StockStatus.OUT_OF_STOCK

    before = table_sizes(context)
    with pytest.raises(InsufficientStockError) as excinfo:
        sales.create_sale(context, sale_command((product.product_id, 1)), cashier)

    assert excinfo.value.available == 0
    assert excinfo.value.requested == 1
    assert product.name in str(excinfo.value)
    assert table_sizes(context) == before
    assert catalog.get_product(context, product.product_id).stock_qty == 0


def test_duplicate_lines_are_checked_together(context, cashier, make_product):
    """Two lines of the same product cannot jointly exceed stock."""

    product = make_product(stock_qty=3)

    with pytest.raises(InsufficientStockError) as excinfo:
        sales.create_sale(context, sale_command((product.product_id, 2), (product.product_id, 2)), cashier)

    assert excinfo.value.requested == 4
    assert catalog.get_product(context, product.product_id).stock_qty == 3


def test_duplicate_lines_within_stock_are_kept_separate(context, cashier, make_product):
    """Lines are persisted as submitted when stock suffices."""

    product = make_product(stock_qty=4)

    view = sales.create_sale(context, sale_command((product.product_id, 1), (product.product_id, 3)), cashier)

    assert [line.item.quantity for line in view.items] == [1, 3]
    assert catalog.get_product(context, product.product_id).stock_qty == 0


def test_inactive_product_cannot_be_sold(context, cashier, make_product):
    """Inactive products are rejected by name."""

    product = make_product(stock_qty=5, status=RecordStatus.INACTIVE)

    with pytest.raises(InactiveProductError) as excinfo:
        sales.create_sale(context, sale_command((product.product_id, 1)), cashier)

    assert excinfo.value.product_id == product.product_id


def test_unknown_product_is_not_found(context, cashier, make_product):
    """A cart referencing a missing product is rejected without writes."""

    product = make_product(stock_qty=5)
    before = table_sizes(context)

    with pytest.raises(MissingReferenceError):
        sales.create_sale(context, sale_command((product.product_id, 1), (999, 1)), cashier)

    assert table_sizes(context) == before


@pytest.mark.parametrize(
    "command_overrides, field",
    [
        ({"items": []}, "items"),
        ({"payment_method": "cheque"}, "payment_method"),
        ({"payment_status": "maybe"}, "payment_status"),
        ({"discount": Decimal("-2")}, "discount"),
        ({"discount": Decimal("150"), "discount_type": DiscountType.PERCENTAGE}, "discount"),
    ],
)
def test_malformed_commands_are_rejected(context, cashier, make_product, command_overrides, field):
    """Command-level validation names the offending field."""

    product = make_product(stock_qty=5)

    with pytest.raises(InvalidInputError) as excinfo:
        sales.create_sale(context, sale_command((product.product_id, 1), **command_overrides), cashier)

    assert excinfo.value.field == field


@pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
def test_quantities_must_be_positive_whole_numbers(context, cashier, make_product, quantity):
    """Zero, negative, boolean, and fractional quantities are refused."""

    product = make_product(stock_qty=5)

    with pytest.raises(InvalidInputError) as excinfo:
        sales.create_sale(context, sale_command((product.product_id, quantity)), cashier)

    assert excinfo.value.field == "quantity"


def test_bill_numbers_are_sequential_per_date(context, cashier, make_product):
    """Each day has its own sequence starting at 0001."""

    product = make_product(stock_qty=10)
    next_day = FIXED_MOMENT + timedelta(days=1)

    numbers = [
        sales.create_sale(context, sale_command((product.product_id, 1)), cashier).bill_number
        for _ in range(3)
    ]
    numbers.append(
        sales.create_sale(context, sale_command((product.product_id, 1), timestamp=next_day), cashier).bill_number
    )

    assert numbers == [
        "INV-20240315-0001",
        "INV-20240315-0002",
        "INV-20240315-0003",
        "INV-20240316-0001",
    ]


def test_naive_timestamp_is_rejected_without_writes(context, cashier, make_product):
    """A timestamp without a timezone is refused before anything is stored."""

    product = make_product(stock_qty=5)
    sales.create_sale(context, sale_command((product.product_id, 1)), cashier)
    before = table_sizes(context)

    with pytest.raises(InvalidInputError) as excinfo:
        sales.create_sale(
            context,
            sale_command((product.product_id, 1), timestamp=datetime(2024, 3, 15, 11, 0)),
            cashier,
        )

    assert excinfo.value.field == "timestamp"
    assert table_sizes(context) == before
    assert catalog.get_product(context, product.product_id).stock_qty == 4
    assert sales.list_bills(context).total == 1


def test_foreign_timezone_is_numbered_by_utc_date(context, cashier, make_product):
    """Late evening in New York is already the next day in UTC."""

    product = make_product(stock_qty=5)
    new_york = timezone(timedelta(hours=-4))
    moment = datetime(2024, 3, 15, 22, 30, tzinfo=new_york)

    view = sales.create_sale(context, sale_command((product.product_id, 1), timestamp=moment), cashier)

    assert view.bill_number == "INV-20240316-0001"
    assert view.bill.sale_date == datetime(2024, 3, 16, 2, 30, tzinfo=UTC)
    assert view.bill.sale_date.utcoffset() == timedelta(0)
    assert [bill.bill_number for bill in sales.list_bills(context).bills] == ["INV-20240316-0001"]


def test_failed_commit_rolls_back_every_write(context, cashier, make_product, monkeypatch):
    """A failure on the second ledger entry leaves no bill, items, or stock change."""

    first = make_product(stock_qty=5)
    second = make_product(stock_qty=5)
    before = table_sizes(context)
    original_post = ledger.post_movement
    calls = {"count": 0}

    def flaky_post(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OSError("disk full")
        return original_post(*args, **kwargs)

    monkeypatch.setattr(ledger, "post_movement", flaky_post)

    with pytest.raises(OSError):
        sales.create_sale(context, sale_command((first.product_id, 2), (second.product_id, 1)), cashier)

    assert table_sizes(context) == before
    assert catalog.get_product(context, first.product_id).stock_qty == 5
    assert catalog.get_product(context, second.product_id).stock_qty == 5

    monkeypatch.setattr(ledger, "post_movement", original_post)
    view = sales.create_sale(context, sale_command((first.product_id, 1)), cashier)
    assert view.bill_number == "INV-20240315-0001"


def test_cancel_restores_stock_for_every_item(context, admin, cashier, make_product):
    """Cancelling a two-item bill restocks both and logs two cancellations."""

    tea = make_product(stock_qty=10)
    cake = make_product(stock_qty=4)
    view = sales.create_sale(context, sale_command((tea.product_id, 3), (cake.product_id, 2)), cashier)

    cancelled = sales.cancel_sale(context, view.bill.bill_id, admin)

    assert cancelled.status is BillStatus.CANCELLED
    assert catalog.get_product(context, tea.product_id).stock_qty == 10
    assert catalog.get_product(context, cake.product_id).stock_qty == 4
    cancellations = [
        movement
        for movement in context.store.rows(SheetName.STOCK_MOVEMENTS)
        if movement.movement_type is MovementType.CANCELLATION
    ]
    assert sorted((m.product_id, m.quantity_change) for m in cancellations) == [
        (tea.product_id, 3),
        (cake.product_id, 2),
    ]
    assert {m.reason for m in cancellations} == {f"Cancellation: {view.bill_number}"}
    assert len(cancelled.items) == 2


def test_second_cancellation_is_refused(context, admin, cashier, make_product):
    """A bill can only be cancelled once; stock is not restored twice."""

    product = make_product(stock_qty=5)
    view = sales.create_sale(context, sale_command((product.product_id, 2)), cashier)
    sales.cancel_sale(context, view.bill.bill_id, admin)
    before = table_sizes(context)

    with pytest.raises(AlreadyCancelledError):
        sales.cancel_sale(context, view.bill.bill_id, admin)

    assert table_sizes(context) == before
    assert catalog.get_product(context, product.product_id).stock_qty == 5


def test_cancel_unknown_bill_is_not_found(context, admin):
    """Cancelling a missing bill is a NotFound error."""

    with pytest.raises(MissingReferenceError):
        sales.cancel_sale(context, 12, admin)


def test_items_keep_price_snapshot(context, admin, cashier, make_product):
    """Later price changes do not alter recorded bills."""

    product = make_product(selling_price="3.00", stock_qty=5)
    view = sales.create_sale(context, sale_command((product.product_id, 1)), cashier)
    catalog.update_product(context, product.product_id, catalog.ProductChanges(selling_price=Decimal("9.00")), admin)

    stored = sales.get_bill(context, view.bill.bill_id)
    assert stored.items[0].item.unit_price == Decimal("3.00")
    assert stored.bill.total == Decimal("3.00")


def test_adjust_stock_records_adjustment(context, admin, make_product):
    """Manual corrections go through the ledger."""

    product = make_product(stock_qty=5)

    updated = sales.adjust_stock(context, product.product_id, -2, "  Damaged in transit ", admin)

    assert updated.stock_qty == 3
    movement = ledger.history(context, product.product_id)[0]
    assert movement.movement_type is MovementType.ADJUSTMENT
    assert movement.reason == "Damaged in transit"


@pytest.mark.parametrize(
    "quantity_change, reason, field",
    [
        (3, "", "reason"),
        (3, "   ", "reason"),
        (0, "Recount", "quantity_change"),
        (-6, "Recount", "quantity_change"),
    ],
)
def test_adjust_stock_validation(context, admin, make_product, quantity_change, reason, field):
    """Blank reasons, zero changes, and negative results are rejected."""

    product = make_product(stock_qty=5)

    with pytest.raises(InvalidInputError) as excinfo:
        sales.adjust_stock(context, product.product_id, quantity_change, reason, admin)

    assert excinfo.value.field == field
    assert catalog.get_product(context, product.product_id).stock_qty == 5


def test_adjust_unknown_product_is_not_found(context, admin):
    """Adjusting a missing product is a NotFound error."""

    with pytest.raises(MissingReferenceError):
        sales.adjust_stock(context, 31, 1, "Found one", admin)


def test_receive_stock_records_purchase(context, admin, make_product):
    """Goods-in increases stock with a purchase movement."""

    product = make_product(stock_qty=1)

    updated = sales.receive_stock(context, product.product_id, 24, admin)

    assert updated.stock_qty == 25
    movement = ledger.history(context, product.product_id)[0]
    assert movement.movement_type is MovementType.PURCHASE
    assert movement.reason == "Stock received"
    with pytest.raises(InvalidInputError):
        sales.receive_stock(context, product.product_id, 0, admin)


def test_get_bill_resolves_display_names(context, seeded_users, cashier, make_product):
    """Bills expose the cashier's and products' names."""

    product = make_product(name="Masala Chai", stock_qty=3)
    view = sales.create_sale(context, sale_command((product.product_id, 1)), cashier)

    stored = sales.get_bill(context, view.bill.bill_id)

    assert stored.cashier_name == "Sam Sales"
    assert stored.items[0].product_name == "Masala Chai"
    with pytest.raises(MissingReferenceError):
        sales.get_bill(context, 99)


def test_list_bills_filters_and_pages(context, admin, cashier, make_product):
    """Bills list newest first with date and status filters."""

    product = make_product(stock_qty=50)
    for offset in range(5):
        sales.create_sale(
            context,
            sale_command((product.product_id, 1), timestamp=FIXED_MOMENT + timedelta(minutes=offset)),
            cashier,
        )
    sales.create_sale(context, sale_command((product.product_id, 1), timestamp=FIXED_MOMENT + timedelta(days=1)), cashier)
    sales.cancel_sale(context, 2, admin)

    page = sales.list_bills(context, page=1, limit=4)
    assert page.total == 6
    assert page.pages == 2
    assert page.bills[0].bill_number == "INV-20240316-0001"
    assert len(sales.list_bills(context, page=2, limit=4).bills) == 2

    same_day = sales.list_bills(context, on_date=FIXED_MOMENT.date())
    assert [bill.bill_number[-4:] for bill in same_day.bills] == ["0005", "0004", "0003", "0002", "0001"]

    cancelled = sales.list_bills(context, status=BillStatus.CANCELLED)
    assert [bill.bill_id for bill in cancelled.bills] == [2]

    with pytest.raises(InvalidInputError):
        sales.list_bills(context, page=0)


def test_concurrent_sales_get_unique_gapless_numbers(context, cashier, make_product):
    """Parallel sales on one date never share or skip a bill number."""

    product = make_product(stock_qty=100)
    numbers = []
    errors = []
    lock = threading.Lock()

    def sell() -> None:
        try:
            view = sales.create_sale(context, sale_command((product.product_id, 1)), cashier)
        except Exception as exc:  # pragma: no cover - surfaced through the assertion below
            errors.append(exc)
            return
        with lock:
            numbers.append(view.bill_number)

    threads = [threading.Thread(target=sell) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(numbers) == [f"INV-20240315-{n:04d}" for n in range(1, 21)]
    assert catalog.get_product(context, product.product_id).stock_qty == 80
    assert ledger.verify_stock_integrity(context) == {}


def test_concurrent_sales_cannot_oversell(context, cashier, make_product):
    """Racing buyers of the last units: exactly the stock on hand is sold."""

    product = make_product(stock_qty=5)
    outcomes = []
    lock = threading.Lock()

    def buy() -> None:
        try:
            sales.create_sale(context, sale_command((product.product_id, 1)), cashier)
            result = "sold"
        except InsufficientStockError:
            result = "refused"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=buy) for _ in range(12)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("sold") == 5
    assert outcomes.count("refused") == 7
    assert catalog.get_product(context, product.product_id).stock_qty == 0


def test_ledger_replay_matches_stock_after_mixed_operations(context, admin, cashier, make_product):
    """After sales, a cancellation, an adjustment, and a receipt the ledger still reconciles."""

    first = make_product(stock_qty=10)
    second = make_product(stock_qty=7)
    bill = sales.create_sale(context, sale_command((first.product_id, 4), (second.product_id, 2)), cashier)
    sales.create_sale(context, sale_command((second.product_id, 5)), cashier)
    sales.cancel_sale(context, bill.bill.bill_id, admin)
    sales.adjust_stock(context, first.product_id, -1, "Expired", admin)
    sales.receive_stock(context, second.product_id, 12, admin)

    for product in (first, second):
        current = catalog.get_product(context, product.product_id)
        assert ledger.replay_balance(context, product.product_id) == current.stock_qty
        assert current.stock_qty >= 0
    assert ledger.verify_stock_integrity(context) == {}
