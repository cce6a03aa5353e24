"""Command-line entry points for Stockbill.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
modules, and printing results. The CLI is also the caller layer that decides
which commands need an admin actor; the business modules trust the actor they
are given.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import catalog, context as runtime, ledger, log, reports, sales
from .constants import (
    BillStatus,
    DiscountType,
    PaymentMethod,
    PaymentStatus,
    RecordStatus,
    Role,
    StockStatus,
)
from .context import RuntimeContext
from .data_manager import Actor
from .errors import BusinessRuleViolation, PermissionDeniedError
from .pricing import round_money, to_decimal

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace, Actor], int]
    admin_only: bool = False
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockbill",
        description="Inventory, billing, and reporting for a single shop.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
    )
    parser.add_argument("--actor-id", type=int, default=1, help="User id recorded on every write.")
    parser.add_argument(
        "--role",
        choices=[member.value for member in Role],
        default=Role.SALES.value,
        help="Role of the acting user; admin-only commands require 'admin'.",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and stock adjustments."""
    specs = {
        "add-category": register_add_category_command(),
        "add-user": register_add_user_command(),
        "update-category": register_update_category_command(),
        "update-user": register_update_user_command(),
        "add-product": register_add_product_command(),
        "update-product": register_update_product_command(),
        "sale": register_sale_command(),
        "cancel": register_cancel_command(),
        "adjust": register_adjust_command(),
        "receive": register_receive_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "movements": register_movements_command(),
        "bills": register_bills_command(),
        "stock": register_stock_command(),
        "alerts": register_alerts_command(),
        "dashboard": register_dashboard_command(),
        "daily": register_daily_command(),
        "monthly": register_monthly_command(),
        "product-sales": register_product_sales_command(),
        "stock-report": register_stock_report_command(),
        "verify": register_verify_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item(raw: str) -> sales.SaleLineRequest:
    """Parse a ``PRODUCT_ID:QUANTITY`` cart line."""
    product_id, separator, quantity = raw.partition(":")
    if not separator:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY, got '{raw}'")
    try:
        return sales.SaleLineRequest(product_id=int(product_id), quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected whole numbers in '{raw}'") from exc


def register_add_category_command() -> CommandSpec:
    """Register the parser and executor for ``add-category``."""
    name = "add-category"
    help_text = "Register a product category."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_add_category,
        admin_only=True,
        writes=True,
    )


def register_add_user_command() -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a user for audit attribution."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", required=True)
        parser.add_argument("--user-role", choices=[member.value for member in Role], default=Role.SALES.value)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_add_user,
        admin_only=True,
        writes=True,
    )


def register_update_category_command() -> CommandSpec:
    """Register the parser and executor for ``update-category``."""
    name = "update-category"
    help_text = "Rename, deactivate, or reactivate a category."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--status", choices=[member.value for member in RecordStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_update_category,
        admin_only=True,
        writes=True,
    )


def register_update_user_command() -> CommandSpec:
    """Register the parser and executor for ``update-user``."""
    name = "update-user"
    help_text = "Change a user's details, role, or status."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--email", default=None)
        parser.add_argument("--user-role", choices=[member.value for member in Role], default=None)
        parser.add_argument("--status", choices=[member.value for member in RecordStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_update_user,
        admin_only=True,
        writes=True,
    )


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product, optionally with opening stock."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--selling-price", required=True)
        parser.add_argument("--purchase-price", default="0")
        parser.add_argument("--tax-pct", default="0")
        parser.add_argument("--stock-qty", type=int, default=0)
        parser.add_argument("--reorder-level", type=int, default=None)
        parser.add_argument("--category-id", type=int, default=None)
        parser.add_argument("--inactive", action="store_true", help="Mark the product as inactive on creation.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_add_product,
        admin_only=True,
        writes=True,
    )


def register_update_product_command() -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change product details; stock is changed through adjust or receive."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--sku", default=None)
        parser.add_argument("--selling-price", default=None)
        parser.add_argument("--purchase-price", default=None)
        parser.add_argument("--tax-pct", default=None)
        parser.add_argument("--reorder-level", type=int, default=None)
        parser.add_argument("--category-id", type=int, default=None)
        parser.add_argument("--status", choices=[member.value for member in RecordStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_update_product,
        admin_only=True,
        writes=True,
    )


def register_sale_command() -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale and print the bill."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item,
            required=True,
            metavar="PRODUCT_ID:QUANTITY",
            help="Cart line; repeat for several products.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument(
            "--payment-status",
            choices=[member.value for member in PaymentStatus],
            default=PaymentStatus.PAID.value,
        )
        parser.add_argument("--discount", default="0")
        parser.add_argument(
            "--discount-type",
            choices=[member.value for member in DiscountType],
            default=DiscountType.FLAT.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, writes=True)


def register_cancel_command() -> CommandSpec:
    """Register the parser and executor for ``cancel``."""
    name = "cancel"
    help_text = "Cancel a bill and restock its items."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_cancel,
        admin_only=True,
        writes=True,
    )


def register_adjust_command() -> CommandSpec:
    """Register the parser and executor for ``adjust``."""
    name = "adjust"
    help_text = "Apply a manual stock correction."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity-change", type=int, required=True)
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_adjust,
        admin_only=True,
        writes=True,
    )


def register_receive_command() -> CommandSpec:
    """Register the parser and executor for ``receive``."""
    name = "receive"
    help_text = "Record goods received from a supplier."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--reason", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_receive,
        admin_only=True,
        writes=True,
    )


def register_movements_command() -> CommandSpec:
    """Register the parser and executor for ``movements``."""
    name = "movements"
    help_text = "Display the stock ledger of one product, newest first."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_movements)


def register_bills_command() -> CommandSpec:
    """Register the parser and executor for ``bills``."""
    name = "bills"
    help_text = "List bills, newest first."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", dest="on_date", type=date.fromisoformat, default=None)
        parser.add_argument("--status", choices=[member.value for member in BillStatus], default=None)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--limit", type=int, default=20)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bills)


def register_stock_command() -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category-id", type=int, default=None)
        parser.add_argument("--status", choices=[member.value for member in StockStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock)


def register_alerts_command() -> CommandSpec:
    """Register the parser and executor for ``alerts``."""
    name = "alerts"
    help_text = "Display products at or below their reorder level."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_alerts)


def register_dashboard_command() -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display headline figures for today and this month."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--today", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_daily_command() -> CommandSpec:
    """Register the parser and executor for ``daily``."""
    name = "daily"
    help_text = "Display the sales of one day."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", dest="on_date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_daily)


def register_monthly_command() -> CommandSpec:
    """Register the parser and executor for ``monthly``."""
    name = "monthly"
    help_text = "Display per-day sales totals for one month."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--month", type=int, required=True)
        parser.add_argument("--year", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_monthly)


def register_product_sales_command() -> CommandSpec:
    """Register the parser and executor for ``product-sales``."""
    name = "product-sales"
    help_text = "Display units sold and revenue per product."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start-date", type=date.fromisoformat, default=None)
        parser.add_argument("--end-date", type=date.fromisoformat, default=None)
        parser.add_argument("--category-id", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_product_sales)


def register_stock_report_command() -> CommandSpec:
    """Register the parser and executor for ``stock-report``."""
    name = "stock-report"
    help_text = "Display stock value and status for active products."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category-id", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_verify_command() -> CommandSpec:
    """Register the parser and executor for ``verify``."""
    name = "verify"
    help_text = "Check every product's stock against its ledger."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_verify)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = runtime.load_runtime_context(config_path)
    runtime.ensure_schema_version(context)
    return context


def build_actor(args: argparse.Namespace) -> Actor:
    return Actor(user_id=args.actor_id, role=Role(args.role))


def dispatch_command(
    context: RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor.

    Raises:
        KeyError: If no command or an unknown command was parsed.
        PermissionDeniedError: If an admin-only command is run by a non-admin.
    """
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    actor = build_actor(args)
    if spec.admin_only and not actor.is_admin:
        log.warning("User %d (%s) denied '%s'", actor.user_id, actor.role.value, spec.name)
        raise PermissionDeniedError(spec.name, actor.role.value)
    return spec.execute(context, args, actor)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command definitions keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def _optional_decimal(value: Optional[str], field: str):
    return to_decimal(value, field) if value is not None else None


def translate_add_product(args: argparse.Namespace) -> catalog.ProductSpec:
    """Translate CLI args into a product creation spec."""
    return catalog.ProductSpec(
        name=args.name,
        sku=args.sku,
        selling_price=to_decimal(args.selling_price, "selling_price"),
        purchase_price=to_decimal(args.purchase_price, "purchase_price"),
        tax_pct=to_decimal(args.tax_pct, "tax_pct"),
        stock_qty=args.stock_qty,
        reorder_level=args.reorder_level,
        category_id=args.category_id,
        status=RecordStatus.INACTIVE if getattr(args, "inactive", False) else RecordStatus.ACTIVE,
    )


def translate_update_product(args: argparse.Namespace) -> catalog.ProductChanges:
    """Translate CLI args into a partial product update."""
    return catalog.ProductChanges(
        name=args.name,
        sku=args.sku,
        category_id=args.category_id,
        purchase_price=_optional_decimal(args.purchase_price, "purchase_price"),
        selling_price=_optional_decimal(args.selling_price, "selling_price"),
        tax_pct=_optional_decimal(args.tax_pct, "tax_pct"),
        reorder_level=args.reorder_level,
        status=RecordStatus(args.status) if args.status else None,
    )


def translate_sale(args: argparse.Namespace) -> sales.SaleCommand:
    """Translate CLI args into a sale command object."""
    return sales.SaleCommand(
        items=tuple(args.items),
        payment_method=PaymentMethod(args.payment_method),
        payment_status=PaymentStatus(args.payment_status),
        discount=to_decimal(args.discount, "discount"),
        discount_type=DiscountType(args.discount_type),
    )


def format_bill(view: sales.BillView) -> Sequence[str]:
    bill = view.bill
    lines = [
        f"{bill.bill_number}  {bill.sale_date:%Y-%m-%d %H:%M}  {bill.status.value}  cashier={view.cashier_name or bill.user_id}",
    ]
    for line in view.items:
        item = line.item
        lines.append(f"  {line.sku:<12} {line.product_name:<24} {item.quantity:>4} x {item.unit_price:>8}  {item.line_total:>9}")
    lines.append(f"  subtotal {bill.subtotal}  tax {bill.tax_amount}  discount {bill.discount}  total {bill.total}")
    lines.append(f"  payment {bill.payment_method.value} ({bill.payment_status.value})")
    return lines


def format_stock_line(line: reports.StockLine) -> str:
    product = line.product
    return (
        f"{product.product_id:>5}  {product.sku:<12} {product.name:<24} "
        f"{product.stock_qty:>6} / {product.reorder_level:<4} {line.stock_status.value:<12} "
        f"{line.category_name or '-'}"
    )


def format_stock_value_line(line: reports.StockLine) -> str:
    """Stock line plus prices and the on-hand value at purchase price."""
    product = line.product
    value = round_money(product.purchase_price * product.stock_qty)
    return (
        f"{format_stock_line(line)}  buy {round_money(product.purchase_price)}  "
        f"sell {round_money(product.selling_price)}  value {value}"
    )


def emit(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def run_add_category(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    category = catalog.add_category(context, args.name)
    print(f"Created category {category.category_id}: {category.name}")
    return 0


def run_add_user(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    user = catalog.add_user(context, args.name, args.email, Role(args.user_role))
    print(f"Created user {user.user_id}: {user.name} <{user.email}> ({user.role.value})")
    return 0


def run_update_category(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    category = catalog.update_category(
        context,
        args.category_id,
        name=args.name,
        status=RecordStatus(args.status) if args.status else None,
    )
    print(f"Updated category {category.category_id}: {category.name} ({category.status.value})")
    return 0


def run_update_user(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    user = catalog.update_user(
        context,
        args.user_id,
        name=args.name,
        email=args.email,
        role=Role(args.user_role) if args.user_role else None,
        status=RecordStatus(args.status) if args.status else None,
    )
    print(f"Updated user {user.user_id}: {user.name} <{user.email}> ({user.role.value}, {user.status.value})")
    return 0


def run_add_product(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    product = catalog.create_product(context, translate_add_product(args), actor)
    print(f"Created product {product.product_id}: {product.sku} {product.name} (stock {product.stock_qty})")
    return 0


def run_update_product(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    product = catalog.update_product(context, args.product_id, translate_update_product(args), actor)
    print(f"Updated product {product.product_id}: {product.sku} {product.name}")
    return 0


def run_sale(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    emit(format_bill(sales.create_sale(context, translate_sale(args), actor)))
    return 0


def run_cancel(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    emit(format_bill(sales.cancel_sale(context, args.bill_id, actor)))
    return 0


def run_adjust(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    product = sales.adjust_stock(context, args.product_id, args.quantity_change, args.reason, actor)
    print(f"{product.sku}: stock now {product.stock_qty}")
    return 0


def run_receive(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    product = sales.receive_stock(context, args.product_id, args.quantity, actor, reason=args.reason)
    print(f"{product.sku}: stock now {product.stock_qty}")
    return 0


def run_movements(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    for movement in ledger.history(context, args.product_id):
        print(
            f"{movement.created_at:%Y-%m-%d %H:%M}  {movement.movement_type.value:<12} "
            f"{movement.quantity_change:+6d}  {movement.reason or ''}"
        )
    return 0


def run_bills(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    page = sales.list_bills(
        context,
        on_date=args.on_date,
        status=BillStatus(args.status) if args.status else None,
        page=args.page,
        limit=args.limit,
    )
    for bill in page.bills:
        print(f"{bill.bill_id:>5}  {bill.bill_number}  {bill.sale_date:%Y-%m-%d %H:%M}  {bill.status.value:<9} {bill.total:>10}")
    print(f"page {page.page} of {page.pages} ({page.total} bills)")
    return 0


def run_stock(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    status = StockStatus(args.status) if args.status else None
    emit(format_stock_line(line) for line in reports.list_stock(context, category_id=args.category_id, status=status))
    return 0


def run_alerts(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    emit(format_stock_line(line) for line in reports.low_stock_alerts(context))
    return 0


def run_dashboard(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    board = reports.dashboard(context, today=args.today)
    print(f"{context.settings.shop_name}")
    print(f"active products: {board.total_products}  low stock: {board.low_stock_count}  out of stock: {board.out_of_stock_count}")
    print(f"today: {board.today_revenue} from {board.today_transactions} bills  month: {board.month_revenue}")
    for line in board.recent_bills:
        print(f"  {line.bill.bill_number}  {line.bill.total:>10}  {line.cashier_name or line.bill.user_id}")
    emit(format_stock_line(line) for line in board.low_stock_products)
    return 0


def run_daily(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    report = reports.daily_sales(context, args.on_date or datetime.now(UTC).date())
    for line in report.bills:
        print(f"{line.bill.bill_number}  {line.bill.total:>10}  {line.cashier_name or line.bill.user_id}")
    summary = report.summary
    print(
        f"{report.on_date.isoformat()}: {summary.transaction_count} bills, revenue {summary.total_revenue}, "
        f"tax {summary.total_tax}, discount {summary.total_discount}"
    )
    return 0


def run_monthly(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    report = reports.monthly_sales(context, args.month, args.year)
    for day in report.daily_totals:
        print(f"{day.day.isoformat()}  {day.transactions:>4}  {day.revenue:>10}")
    summary = report.summary
    print(f"{report.label}: {summary.transaction_count} bills, revenue {summary.total_revenue}, tax {summary.total_tax}")
    return 0


def run_product_sales(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    for line in reports.product_sales(
        context,
        start_date=args.start_date,
        end_date=args.end_date,
        category_id=args.category_id,
    ):
        print(f"{line.sku:<12} {line.name:<24} {line.units_sold:>6}  {line.revenue:>10}")
    return 0


def run_stock_report(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    emit(format_stock_value_line(line) for line in reports.stock_report(context, category_id=args.category_id))
    return 0


def run_verify(context: RuntimeContext, args: argparse.Namespace, actor: Actor) -> int:
    mismatches = ledger.verify_stock_integrity(context)
    for product_id, (cached, replayed) in sorted(mismatches.items()):
        print(f"product {product_id}: stock {cached}, ledger {replayed}")
    if mismatches:
        return 1
    print("Stock matches the ledger for every product.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        runtime.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        spec = command_table.get(args.command)
        if exit_code == 0 and spec is not None and spec.writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
