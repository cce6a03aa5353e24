"""Enumerations shared across Stockbill modules.

Every status or type column in the workbook is a closed set. Keeping the
members here lets the data access layer, the business modules, and the CLI
agree on the exact text persisted for each value.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_REORDER_LEVEL = 10
CURRENCY_QUANTUM = Decimal("0.01")
BILL_NUMBER_PREFIX = "INV"


class MovementType(str, Enum):
    """Enumerate the causes recorded on a stock movement."""

    INITIAL = "initial"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    PURCHASE = "purchase"
    CANCELLATION = "cancellation"


class RecordStatus(str, Enum):
    """Soft-delete flag used by products, categories, and users."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class StockStatus(str, Enum):
    """Stock classification derived from on-hand quantity and reorder level."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class BillStatus(str, Enum):
    """Lifecycle of a sales bill. The only transition is completed -> cancelled."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    """How a bill-level discount amount is interpreted."""

    FLAT = "flat"
    PERCENTAGE = "percentage"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    CARD = "card"
    ONLINE = "online"


class PaymentStatus(str, Enum):
    """Settlement state of a bill."""

    PAID = "paid"
    PENDING = "pending"


class Role(str, Enum):
    """Roles supplied by the external authentication collaborator."""

    ADMIN = "admin"
    SALES = "sales"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    CATEGORIES = "Categories"
    USERS = "Users"
    PRODUCTS = "Products"
    STOCK_MOVEMENTS = "StockMovements"
    SALES_BILLS = "SalesBills"
    SALES_BILL_ITEMS = "SalesBillItems"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_REORDER_LEVEL",
    "CURRENCY_QUANTUM",
    "BILL_NUMBER_PREFIX",
    "MovementType",
    "RecordStatus",
    "StockStatus",
    "BillStatus",
    "DiscountType",
    "PaymentMethod",
    "PaymentStatus",
    "Role",
    "SheetName",
]
