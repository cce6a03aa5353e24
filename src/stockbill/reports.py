"""Read-only aggregates over committed bills and the catalog.

Cancelled bills never count towards revenue, transaction counts, or units
sold. Every report is assembled from a single locked snapshot of the store,
and currency figures are rounded to cents on output.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from . import log
from .catalog import category_names, stock_status, user_names
from .constants import BillStatus, RecordStatus, SheetName, StockStatus
from .context import RuntimeContext
from .data_manager import ProductRow, SalesBillRow
from .errors import InvalidInputError
from .pricing import ZERO, round_money

RECENT_BILLS_LIMIT = 5
LOW_STOCK_LIMIT = 10


@dataclass(frozen=True)
class SalesSummary:
    transaction_count: int
    total_revenue: Decimal
    total_tax: Decimal
    total_discount: Decimal


@dataclass(frozen=True)
class BillSummaryLine:
    """A bill as listed in reports, with the cashier's display name."""

    bill: SalesBillRow
    cashier_name: Optional[str]


@dataclass(frozen=True)
class DailySalesReport:
    on_date: date
    bills: List[BillSummaryLine]
    summary: SalesSummary


@dataclass(frozen=True)
class DayTotal:
    day: date
    transactions: int
    revenue: Decimal


@dataclass(frozen=True)
class MonthlySalesReport:
    year: int
    month: int
    daily_totals: List[DayTotal]
    summary: SalesSummary

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class ProductSalesLine:
    product_id: int
    name: str
    sku: str
    category_name: Optional[str]
    units_sold: int
    revenue: Decimal


@dataclass(frozen=True)
class StockLine:
    """Catalog snapshot row with the computed stock classification."""

    product: ProductRow
    category_name: Optional[str]
    stock_status: StockStatus


@dataclass(frozen=True)
class Dashboard:
    total_products: int
    low_stock_count: int
    out_of_stock_count: int
    today_revenue: Decimal
    today_transactions: int
    month_revenue: Decimal
    recent_bills: List[BillSummaryLine]
    low_stock_products: List[StockLine]


def _completed(bills: Iterable[SalesBillRow]) -> List[SalesBillRow]:
    return [bill for bill in bills if bill.status is BillStatus.COMPLETED]


def _summarize(bills: List[SalesBillRow]) -> SalesSummary:
    return SalesSummary(
        transaction_count=len(bills),
        total_revenue=round_money(sum((bill.total for bill in bills), ZERO)),
        total_tax=round_money(sum((bill.tax_amount for bill in bills), ZERO)),
        total_discount=round_money(sum((bill.discount for bill in bills), ZERO)),
    )


def _in_month(moment: datetime, year: int, month: int) -> bool:
    return moment.year == year and moment.month == month


def _stock_line(product: ProductRow, categories: Dict[int, str]) -> StockLine:
    return StockLine(
        product=product,
        category_name=categories.get(product.category_id) if product.category_id is not None else None,
        stock_status=stock_status(product),
    )


def dashboard(context: RuntimeContext, *, today: Optional[date] = None) -> Dashboard:
    """Return the headline counts and figures for the shop front page.

    Args:
        context (RuntimeContext): Runtime context holding the store.
        today (date | None): The calendar day treated as "today"; defaults to
            the current UTC date.
    """

    today = today or datetime.now(UTC).date()
    with context.store.reading() as store:
        products = store.rows(SheetName.PRODUCTS, lambda product: product.is_active)
        bills = _completed(store.rows(SheetName.SALES_BILLS))
        categories = category_names(context)
        cashiers = user_names(context)

    todays = [bill for bill in bills if bill.sale_date.date() == today]
    monthly = [bill for bill in bills if _in_month(bill.sale_date, today.year, today.month)]
    recent = sorted(bills, key=lambda bill: (bill.sale_date, bill.bill_id), reverse=True)[:RECENT_BILLS_LIMIT]
    low_stock = sorted(
        (product for product in products if product.stock_qty <= product.reorder_level),
        key=lambda product: (product.stock_qty, product.product_id),
    )[:LOW_STOCK_LIMIT]

    statuses = [stock_status(product) for product in products]
    result = Dashboard(
        total_products=len(products),
        low_stock_count=statuses.count(StockStatus.LOW_STOCK),
        out_of_stock_count=statuses.count(StockStatus.OUT_OF_STOCK),
        today_revenue=round_money(sum((bill.total for bill in todays), ZERO)),
        today_transactions=len(todays),
        month_revenue=round_money(sum((bill.total for bill in monthly), ZERO)),
        recent_bills=[BillSummaryLine(bill, cashiers.get(bill.user_id)) for bill in recent],
        low_stock_products=[_stock_line(product, categories) for product in low_stock],
    )
    log.debug("Built dashboard for %s (%d active products)", today.isoformat(), result.total_products)
    return result


def daily_sales(context: RuntimeContext, on_date: date) -> DailySalesReport:
    """List the completed bills of one calendar day, newest first, with totals."""

    with context.store.reading() as store:
        bills = _completed(store.rows(SheetName.SALES_BILLS, lambda bill: bill.sale_date.date() == on_date))
        cashiers = user_names(context)
    bills.sort(key=lambda bill: (bill.sale_date, bill.bill_id), reverse=True)
    return DailySalesReport(
        on_date=on_date,
        bills=[BillSummaryLine(bill, cashiers.get(bill.user_id)) for bill in bills],
        summary=_summarize(bills),
    )


def monthly_sales(context: RuntimeContext, month: int, year: int) -> MonthlySalesReport:
    """Roll completed bills of one month up per day.

    Raises:
        InvalidInputError: If ``month`` is not between 1 and 12.
    """

    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidInputError("month", "month must be between 1 and 12")

    bills = _completed(context.store.rows(SheetName.SALES_BILLS, lambda bill: _in_month(bill.sale_date, year, month)))
    per_day: Dict[date, List[SalesBillRow]] = {}
    for bill in bills:
        per_day.setdefault(bill.sale_date.date(), []).append(bill)

    daily_totals = [
        DayTotal(
            day=day,
            transactions=len(day_bills),
            revenue=round_money(sum((bill.total for bill in day_bills), ZERO)),
        )
        for day, day_bills in sorted(per_day.items())
    ]
    return MonthlySalesReport(year=year, month=month, daily_totals=daily_totals, summary=_summarize(bills))


def product_sales(
    context: RuntimeContext,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
) -> List[ProductSalesLine]:
    """Aggregate units sold and line revenue per product, highest revenue first.

    ``start_date`` and ``end_date`` are inclusive calendar days.
    """

    def in_range(bill: SalesBillRow) -> bool:
        day = bill.sale_date.date()
        if start_date is not None and day < start_date:
            return False
        if end_date is not None and day > end_date:
            return False
        return bill.status is BillStatus.COMPLETED

    with context.store.reading() as store:
        bill_ids = {bill.bill_id for bill in store.rows(SheetName.SALES_BILLS, in_range)}
        items = store.rows(SheetName.SALES_BILL_ITEMS, lambda item: item.bill_id in bill_ids)
        products = {product.product_id: product for product in store.rows(SheetName.PRODUCTS)}
        categories = category_names(context)

    units: Dict[int, int] = {}
    revenue: Dict[int, Decimal] = {}
    for item in items:
        product = products.get(item.product_id)
        if product is None or (category_id is not None and product.category_id != category_id):
            continue
        units[item.product_id] = units.get(item.product_id, 0) + item.quantity
        revenue[item.product_id] = revenue.get(item.product_id, ZERO) + item.line_total

    lines = [
        ProductSalesLine(
            product_id=product_id,
            name=products[product_id].name,
            sku=products[product_id].sku,
            category_name=categories.get(products[product_id].category_id),
            units_sold=units[product_id],
            revenue=round_money(revenue[product_id]),
        )
        for product_id in units
    ]
    lines.sort(key=lambda line: (-line.revenue, line.product_id))
    return lines


def list_stock(
    context: RuntimeContext,
    *,
    category_id: Optional[int] = None,
    status: Optional[StockStatus] = None,
) -> List[StockLine]:
    """Return active products with their stock status, lowest stock first."""

    def matches(product: ProductRow) -> bool:
        if product.status is not RecordStatus.ACTIVE:
            return False
        if category_id is not None and product.category_id != category_id:
            return False
        return status is None or stock_status(product) is status

    with context.store.reading() as store:
        products = store.rows(SheetName.PRODUCTS, matches)
        categories = category_names(context)
    products.sort(key=lambda product: (product.stock_qty, product.product_id))
    return [_stock_line(product, categories) for product in products]


def stock_report(context: RuntimeContext, *, category_id: Optional[int] = None) -> List[StockLine]:
    return list_stock(context, category_id=category_id)


def low_stock_alerts(context: RuntimeContext) -> List[StockLine]:
    """Active products at or below their reorder level, out of stock first."""

    alerts = [line for line in list_stock(context) if line.stock_status is not StockStatus.IN_STOCK]
    if alerts:
        log.info("%d products at or below reorder level", len(alerts))
    return alerts
