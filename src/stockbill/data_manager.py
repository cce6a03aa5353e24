"""Data access layer for Stockbill.

This module provides low-level helpers that read from and write to the
``stockbill_master.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or replacing
   individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from .constants import (
    DEFAULT_REORDER_LEVEL,
    BillStatus,
    DiscountType,
    MovementType,
    PaymentMethod,
    PaymentStatus,
    RecordStatus,
    Role,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_reorder_level: int = DEFAULT_REORDER_LEVEL
    auto_save: bool = True


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation, trusted as given."""

    user_id: int
    role: Role = Role.SALES

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class CategoryRow:
    """In-memory view of a row from the ``Categories`` sheet."""

    category_id: int
    name: str
    status: RecordStatus
    created_at: datetime


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: int
    name: str
    email: str
    role: Role
    status: RecordStatus
    created_at: datetime


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: int
    name: str
    sku: str
    category_id: Optional[int]
    purchase_price: Decimal
    selling_price: Decimal
    tax_pct: Decimal
    stock_qty: int
    reorder_level: int
    status: RecordStatus
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status is RecordStatus.ACTIVE


@dataclass(frozen=True)
class StockMovementRow:
    """In-memory view of a row from the ``StockMovements`` sheet."""

    movement_id: int
    product_id: int
    movement_type: MovementType
    quantity_change: int
    reason: Optional[str]
    user_id: int
    created_at: datetime


@dataclass(frozen=True)
class SalesBillRow:
    """In-memory view of a row from the ``SalesBills`` sheet."""

    bill_id: int
    bill_number: str
    sale_date: datetime
    subtotal: Decimal
    tax_amount: Decimal
    discount: Decimal
    discount_type: DiscountType
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: BillStatus
    user_id: int
    created_at: datetime


@dataclass(frozen=True)
class SalesBillItemRow:
    """In-memory view of a row from the ``SalesBillItems`` sheet."""

    item_id: int
    bill_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    tax_pct: Decimal
    line_total: Decimal


# Column order per sheet; the first column always holds the primary key.
SHEET_COLUMNS: Mapping[SheetName, Sequence[str]] = {
    SheetName.CATEGORIES: ["CategoryID", "Name", "Status", "CreatedAt"],
    SheetName.USERS: ["UserID", "Name", "Email", "Role", "Status", "CreatedAt"],
    SheetName.PRODUCTS: [
        "ProductID",
        "Name",
        "SKU",
        "CategoryID",
        "PurchasePrice",
        "SellingPrice",
        "TaxPct",
        "StockQty",
        "ReorderLevel",
        "Status",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.STOCK_MOVEMENTS: [
        "MovementID",
        "ProductID",
        "Type",
        "QuantityChange",
        "Reason",
        "UserID",
        "CreatedAt",
    ],
    SheetName.SALES_BILLS: [
        "BillID",
        "BillNumber",
        "SaleDate",
        "Subtotal",
        "TaxAmount",
        "Discount",
        "DiscountType",
        "Total",
        "PaymentMethod",
        "PaymentStatus",
        "Status",
        "UserID",
        "CreatedAt",
    ],
    SheetName.SALES_BILL_ITEMS: [
        "ItemID",
        "BillID",
        "ProductID",
        "Quantity",
        "UnitPrice",
        "TaxPct",
        "LineTotal",
    ],
}


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` entries are mandatory. ``[Defaults]`` entries fall back to
    the package defaults when absent. Relative ``DataFile`` paths are expanded
    against ``base_path`` (or the working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a ``[Defaults]`` entry cannot be converted.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    reorder_level = parser.getint("Defaults", "ReorderLevel", fallback=DEFAULT_REORDER_LEVEL)
    auto_save = parser.getboolean("Defaults", "AutoSave", fallback=True)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_reorder_level=reorder_level,
        auto_save=auto_save,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_workbook(workbook: Workbook) -> None:
    """Check that every managed sheet exists with the expected header row.

    Raises:
        KeyError: If a sheet is missing or its header differs from
            :data:`SHEET_COLUMNS`.
    """

    for sheet_name, columns in SHEET_COLUMNS.items():
        if sheet_name.value not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet_name.value}")
        header = [cell.value for cell in workbook[sheet_name.value][1]]
        if header[: len(columns)] != list(columns):
            raise KeyError(f"Unexpected header on sheet {sheet_name.value}: {header}")


def iter_records(workbook: Workbook, sheet_name: SheetName) -> Iterable[Any]:
    """Iterate over typed records stored on ``sheet_name``.

    The iterator skips the header row and any fully empty rows. Each remaining
    row is converted through the sheet's deserializer.

    Yields:
        Any: One row dataclass per populated worksheet row.
    """

    deserialize = DESERIALIZERS[sheet_name]
    sheet = workbook[sheet_name.value]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize(raw)


def append_record(workbook: Workbook, sheet_name: SheetName, record: Any) -> None:
    """Append ``record`` to the worksheet in the sheet's column ordering."""

    sheet = workbook[sheet_name.value]
    sheet.append(SERIALIZERS[sheet_name](record))


def replace_record(workbook: Workbook, sheet_name: SheetName, record: Any) -> None:
    """Overwrite the worksheet row whose primary key matches ``record``.

    Raises:
        KeyError: If no row carries the record's primary key.
    """

    values = SERIALIZERS[sheet_name](record)
    key_column = SHEET_COLUMNS[sheet_name][0]
    row_index = locate_row(workbook, sheet_name.value, key_column, values[0])
    if row_index is None:
        raise KeyError(f"{sheet_name.value} row not found: {values[0]}")

    sheet = workbook[sheet_name.value]
    for column_index, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column_index, value=value)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: object) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (object): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def _iso(moment: datetime) -> str:
    # openpyxl rejects timezone-aware datetimes, so timestamps travel as text.
    return moment.isoformat()


def _to_datetime(raw: object) -> datetime:
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(raw) if raw is not None else 0


def _to_optional_int(raw: object) -> Optional[int]:
    return int(raw) if raw is not None else None


def _to_optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def serialize_category(record: CategoryRow) -> list[object]:
    return [record.category_id, record.name, record.status.value, _iso(record.created_at)]


def serialize_user(record: UserRow) -> list[object]:
    return [
        record.user_id,
        record.name,
        record.email,
        record.role.value,
        record.status.value,
        _iso(record.created_at),
    ]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.sku,
        record.category_id,
        record.purchase_price,
        record.selling_price,
        record.tax_pct,
        record.stock_qty,
        record.reorder_level,
        record.status.value,
        _iso(record.created_at),
        _iso(record.updated_at),
    ]


def serialize_movement(record: StockMovementRow) -> list[object]:
    return [
        record.movement_id,
        record.product_id,
        record.movement_type.value,
        record.quantity_change,
        record.reason,
        record.user_id,
        _iso(record.created_at),
    ]


def serialize_bill(record: SalesBillRow) -> list[object]:
    """Convert a bill dataclass into the worksheet column ordering.

    Monetary fields remain :class:`~decimal.Decimal` instances so Excel keeps
    the two-decimal values produced by the pricing module.
    """

    return [
        record.bill_id,
        record.bill_number,
        _iso(record.sale_date),
        record.subtotal,
        record.tax_amount,
        record.discount,
        record.discount_type.value,
        record.total,
        record.payment_method.value,
        record.payment_status.value,
        record.status.value,
        record.user_id,
        _iso(record.created_at),
    ]


def serialize_bill_item(record: SalesBillItemRow) -> list[object]:
    return [
        record.item_id,
        record.bill_id,
        record.product_id,
        record.quantity,
        record.unit_price,
        record.tax_pct,
        record.line_total,
    ]


def deserialize_category(raw_row: Sequence[object]) -> CategoryRow:
    category_id, name, status, created_at = raw_row[:4]
    return CategoryRow(
        category_id=int(category_id),
        name=str(name),
        status=RecordStatus(status or RecordStatus.ACTIVE.value),
        created_at=_to_datetime(created_at),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    user_id, name, email, role, status, created_at = raw_row[:6]
    return UserRow(
        user_id=int(user_id),
        name=str(name),
        email=str(email),
        role=Role(role),
        status=RecordStatus(status or RecordStatus.ACTIVE.value),
        created_at=_to_datetime(created_at),
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric cells come back from Excel as floats or ints; prices are routed
    through ``str`` before building :class:`~decimal.Decimal` instances so no
    binary floating point noise leaks into pricing.
    """

    (
        product_id,
        name,
        sku,
        category_id,
        purchase_price,
        selling_price,
        tax_pct,
        stock_qty,
        reorder_level,
        status,
        created_at,
        updated_at,
    ) = raw_row[:12]

    return ProductRow(
        product_id=int(product_id),
        name=str(name),
        sku=str(sku),
        category_id=_to_optional_int(category_id),
        purchase_price=_to_decimal(purchase_price),
        selling_price=_to_decimal(selling_price),
        tax_pct=_to_decimal(tax_pct, "0"),
        stock_qty=_to_int(stock_qty),
        reorder_level=_to_int(reorder_level),
        status=RecordStatus(status or RecordStatus.ACTIVE.value),
        created_at=_to_datetime(created_at),
        updated_at=_to_datetime(updated_at),
    )


def deserialize_movement(raw_row: Sequence[object]) -> StockMovementRow:
    movement_id, product_id, movement_type, quantity_change, reason, user_id, created_at = raw_row[:7]
    return StockMovementRow(
        movement_id=int(movement_id),
        product_id=int(product_id),
        movement_type=MovementType(movement_type),
        quantity_change=_to_int(quantity_change),
        reason=_to_optional_text(reason),
        user_id=_to_int(user_id),
        created_at=_to_datetime(created_at),
    )


def deserialize_bill(raw_row: Sequence[object]) -> SalesBillRow:
    (
        bill_id,
        bill_number,
        sale_date,
        subtotal,
        tax_amount,
        discount,
        discount_type,
        total,
        payment_method,
        payment_status,
        status,
        user_id,
        created_at,
    ) = raw_row[:13]

    return SalesBillRow(
        bill_id=int(bill_id),
        bill_number=str(bill_number),
        sale_date=_to_datetime(sale_date),
        subtotal=_to_decimal(subtotal),
        tax_amount=_to_decimal(tax_amount),
        discount=_to_decimal(discount),
        discount_type=DiscountType(discount_type or DiscountType.FLAT.value),
        total=_to_decimal(total),
        payment_method=PaymentMethod(payment_method),
        payment_status=PaymentStatus(payment_status or PaymentStatus.PAID.value),
        status=BillStatus(status or BillStatus.COMPLETED.value),
        user_id=_to_int(user_id),
        created_at=_to_datetime(created_at),
    )


def deserialize_bill_item(raw_row: Sequence[object]) -> SalesBillItemRow:
    item_id, bill_id, product_id, quantity, unit_price, tax_pct, line_total = raw_row[:7]
    return SalesBillItemRow(
        item_id=int(item_id),
        bill_id=int(bill_id),
        product_id=int(product_id),
        quantity=_to_int(quantity),
        unit_price=_to_decimal(unit_price),
        tax_pct=_to_decimal(tax_pct, "0"),
        line_total=_to_decimal(line_total),
    )


SERIALIZERS: Dict[SheetName, Callable[[Any], list[object]]] = {
    SheetName.CATEGORIES: serialize_category,
    SheetName.USERS: serialize_user,
    SheetName.PRODUCTS: serialize_product,
    SheetName.STOCK_MOVEMENTS: serialize_movement,
    SheetName.SALES_BILLS: serialize_bill,
    SheetName.SALES_BILL_ITEMS: serialize_bill_item,
}

DESERIALIZERS: Dict[SheetName, Callable[[Sequence[object]], Any]] = {
    SheetName.CATEGORIES: deserialize_category,
    SheetName.USERS: deserialize_user,
    SheetName.PRODUCTS: deserialize_product,
    SheetName.STOCK_MOVEMENTS: deserialize_movement,
    SheetName.SALES_BILLS: deserialize_bill,
    SheetName.SALES_BILL_ITEMS: deserialize_bill_item,
}


def record_key(record: Any) -> int:
    """Return the primary key of any row dataclass (always its first field)."""

    first_field = next(iter(record.__dataclass_fields__))
    return getattr(record, first_field)
