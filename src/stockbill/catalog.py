"""Product catalog plus the category and user lookup tables.

Products hold the current selling price, tax rate, and a cached on-hand
quantity. The quantity is never written here directly: opening stock is
posted through :func:`stockbill.ledger.post_movement` as an ``initial``
movement in the same unit of work that creates the product.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import ledger, log
from .constants import MovementType, RecordStatus, Role, SheetName, StockStatus
from .context import RuntimeContext, resolve_timestamp
from .data_manager import Actor, CategoryRow, ProductRow, UserRow
from .errors import ConflictError, InvalidInputError, MissingReferenceError
from .pricing import to_decimal

INITIAL_STOCK_REASON = "Initial stock on product creation"


@dataclass(frozen=True)
class ProductSpec:
    """Fields accepted when creating a product."""

    name: str
    sku: str
    selling_price: Decimal
    purchase_price: Decimal = Decimal("0")
    tax_pct: Decimal = Decimal("0")
    stock_qty: int = 0
    reorder_level: Optional[int] = None
    category_id: Optional[int] = None
    status: RecordStatus = RecordStatus.ACTIVE


@dataclass(frozen=True)
class ProductChanges:
    """Partial update; ``None`` leaves the stored value untouched."""

    name: Optional[str] = None
    sku: Optional[str] = None
    category_id: Optional[int] = None
    purchase_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    tax_pct: Optional[Decimal] = None
    reorder_level: Optional[int] = None
    status: Optional[RecordStatus] = None


def stock_status(product: ProductRow) -> StockStatus:
    """Classify a product's stock level. Computed on read, never stored."""

    if product.stock_qty == 0:
        return StockStatus.OUT_OF_STOCK
    if product.stock_qty <= product.reorder_level:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def get_product(context: RuntimeContext, product_id: int) -> ProductRow:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    product = context.store.get(SheetName.PRODUCTS, product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError("product", product_id)
    return product


def find_product_by_sku(context: RuntimeContext, sku: str) -> Optional[ProductRow]:
    matches = context.store.rows(SheetName.PRODUCTS, lambda product: product.sku == sku)
    return matches[0] if matches else None


def list_products(
    context: RuntimeContext,
    *,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    status: Optional[RecordStatus] = None,
) -> List[ProductRow]:
    """Return products sorted by name.

    Args:
        search (str | None): Case-insensitive substring matched against the
            name or the SKU.
        category_id (int | None): Restrict to one category.
        status (RecordStatus | None): Restrict to active or inactive products.
    """
    needle = search.strip().lower() if search else None

    def matches(product: ProductRow) -> bool:
        if needle and needle not in product.name.lower() and needle not in product.sku.lower():
            return False
        if category_id is not None and product.category_id != category_id:
            return False
        if status is not None and product.status is not status:
            return False
        return True

    return sorted(context.store.rows(SheetName.PRODUCTS, matches), key=lambda product: product.name.lower())


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(field, f"Product {field} is required")
    return str(value).strip()


def _require_money(value: object, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise InvalidInputError(field, f"{field} must be zero or positive")
    return amount


def _require_tax_pct(value: object) -> Decimal:
    tax_pct = to_decimal(value, "tax_pct")
    if not Decimal("0") <= tax_pct <= Decimal("100"):
        raise InvalidInputError("tax_pct", "tax_pct must be between 0 and 100")
    return tax_pct


def _require_count(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInputError(field, f"{field} must be a whole number of at least zero")
    return value


def _require_category(context: RuntimeContext, category_id: Optional[int]) -> Optional[int]:
    if category_id is not None and context.store.get(SheetName.CATEGORIES, category_id) is None:
        raise InvalidInputError("category_id", f"Unknown category: {category_id}")
    return category_id


def _require_status(value: object) -> RecordStatus:
    if not isinstance(value, RecordStatus):
        raise InvalidInputError("status", f"Unsupported status: {value}")
    return value


def create_product(
    context: RuntimeContext,
    spec: ProductSpec,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Validate and insert a new product.

    A positive opening ``stock_qty`` is posted as an ``initial`` ledger entry
    before the product is returned, inside the same unit of work.

    Raises:
        ConflictError: If another product already uses ``spec.sku``.
        InvalidInputError: If a field is missing or out of range.
    """
    name = _require_text(spec.name, "name")
    sku = _require_text(spec.sku, "sku")
    purchase_price = _require_money(spec.purchase_price, "purchase_price")
    selling_price = _require_money(spec.selling_price, "selling_price")
    tax_pct = _require_tax_pct(spec.tax_pct)
    opening_stock = _require_count(spec.stock_qty, "stock_qty")
    reorder_level = _require_count(
        spec.reorder_level if spec.reorder_level is not None else context.settings.default_reorder_level,
        "reorder_level",
    )
    status = _require_status(spec.status)
    moment = resolve_timestamp(timestamp)

    store = context.store
    with store.transaction():
        if find_product_by_sku(context, sku) is not None:
            log.warning("Rejected product creation: SKU '%s' already exists", sku)
            raise ConflictError("product", "sku", sku)
        product = ProductRow(
            product_id=store.next_id(SheetName.PRODUCTS),
            name=name,
            sku=sku,
            category_id=_require_category(context, spec.category_id),
            purchase_price=purchase_price,
            selling_price=selling_price,
            tax_pct=tax_pct,
            stock_qty=0,
            reorder_level=reorder_level,
            status=status,
            created_at=moment,
            updated_at=moment,
        )
        store.insert(SheetName.PRODUCTS, product)
        if opening_stock > 0:
            product, _movement = ledger.post_movement(
                context,
                product.product_id,
                MovementType.INITIAL,
                opening_stock,
                INITIAL_STOCK_REASON,
                actor,
                timestamp=moment,
            )

    log.info("Created product %d '%s' (sku=%s, stock=%d)", product.product_id, name, sku, product.stock_qty)
    return product


def update_product(
    context: RuntimeContext,
    product_id: int,
    changes: ProductChanges,
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Apply a partial update to a product. Stock levels are not editable here.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        ConflictError: If a different product already owns the new SKU.
        InvalidInputError: If a supplied field is out of range.
    """
    values: Dict[str, Any] = {}
    if changes.name is not None:
        values["name"] = _require_text(changes.name, "name")
    if changes.sku is not None:
        values["sku"] = _require_text(changes.sku, "sku")
    if changes.purchase_price is not None:
        values["purchase_price"] = _require_money(changes.purchase_price, "purchase_price")
    if changes.selling_price is not None:
        values["selling_price"] = _require_money(changes.selling_price, "selling_price")
    if changes.tax_pct is not None:
        values["tax_pct"] = _require_tax_pct(changes.tax_pct)
    if changes.reorder_level is not None:
        values["reorder_level"] = _require_count(changes.reorder_level, "reorder_level")
    if changes.status is not None:
        values["status"] = _require_status(changes.status)

    store = context.store
    with store.transaction():
        product = get_product(context, product_id)
        if "sku" in values:
            owner = find_product_by_sku(context, values["sku"])
            if owner is not None and owner.product_id != product_id:
                log.warning("Rejected update of product %d: SKU '%s' owned by %d", product_id, values["sku"], owner.product_id)
                raise ConflictError("product", "sku", values["sku"])
        if changes.category_id is not None:
            values["category_id"] = _require_category(context, changes.category_id)
        updated = replace(product, updated_at=resolve_timestamp(timestamp), **values)
        store.replace(SheetName.PRODUCTS, updated)

    log.info("Updated product %d by user %d: %s", product_id, actor.user_id, ", ".join(sorted(values)) or "no fields")
    return updated


def add_category(context: RuntimeContext, name: str, *, timestamp: Optional[datetime] = None) -> CategoryRow:
    """Insert a category; names are unique.

    Raises:
        ConflictError: If the name already exists.
    """
    if name is None or not name.strip():
        raise InvalidInputError("name", "Category name is required")
    name = name.strip()
    store = context.store
    with store.transaction():
        if store.rows(SheetName.CATEGORIES, lambda category: category.name == name):
            raise ConflictError("category", "name", name)
        category = CategoryRow(
            category_id=store.next_id(SheetName.CATEGORIES),
            name=name,
            status=RecordStatus.ACTIVE,
            created_at=resolve_timestamp(timestamp),
        )
        store.insert(SheetName.CATEGORIES, category)
    log.info("Created category %d '%s'", category.category_id, name)
    return category


def get_category(context: RuntimeContext, category_id: int) -> CategoryRow:
    category = context.store.get(SheetName.CATEGORIES, category_id)
    if category is None:
        raise MissingReferenceError("category", category_id)
    return category


def list_categories(context: RuntimeContext) -> List[CategoryRow]:
    return sorted(context.store.rows(SheetName.CATEGORIES), key=lambda category: category.name.lower())


def category_names(context: RuntimeContext) -> Dict[int, str]:
    return {category.category_id: category.name for category in context.store.rows(SheetName.CATEGORIES)}


def update_category(
    context: RuntimeContext,
    category_id: int,
    *,
    name: Optional[str] = None,
    status: Optional[RecordStatus] = None,
) -> CategoryRow:
    """Rename or (de)activate a category; ``None`` keeps the stored value.

    Raises:
        MissingReferenceError: If ``category_id`` is unknown.
        ConflictError: If another category already has ``name``.
        InvalidInputError: If ``name`` is blank or ``status`` is not a status.
    """
    values: Dict[str, Any] = {}
    if name is not None:
        if not name.strip():
            raise InvalidInputError("name", "Category name is required")
        values["name"] = name.strip()
    if status is not None:
        values["status"] = _require_status(status)
    store = context.store
    with store.transaction():
        category = get_category(context, category_id)
        if "name" in values and store.rows(
            SheetName.CATEGORIES,
            lambda other: other.name == values["name"] and other.category_id != category_id,
        ):
            raise ConflictError("category", "name", values["name"])
        updated = store.replace(SheetName.CATEGORIES, replace(category, **values))
    log.info("Updated category %d: %s", category_id, ", ".join(sorted(values)) or "no fields")
    return updated


def add_user(
    context: RuntimeContext,
    name: str,
    email: str,
    role: Role,
    *,
    timestamp: Optional[datetime] = None,
) -> UserRow:
    """Register a user record for audit attribution.

    Credentials live with the external authentication service; only the
    identity and role are stored here.

    Raises:
        ConflictError: If the email is already registered.
        InvalidInputError: If a field is blank or the role is unknown.
    """
    if not name or not name.strip():
        raise InvalidInputError("name", "User name is required")
    if not email or not email.strip():
        raise InvalidInputError("email", "User email is required")
    if not isinstance(role, Role):
        raise InvalidInputError("role", "Role must be admin or sales")
    email = email.strip()
    store = context.store
    with store.transaction():
        if store.rows(SheetName.USERS, lambda user: user.email == email):
            raise ConflictError("user", "email", email)
        user = UserRow(
            user_id=store.next_id(SheetName.USERS),
            name=name.strip(),
            email=email,
            role=role,
            status=RecordStatus.ACTIVE,
            created_at=resolve_timestamp(timestamp),
        )
        store.insert(SheetName.USERS, user)
    log.info("Created %s user %d '%s'", role.value, user.user_id, user.name)
    return user


def get_user(context: RuntimeContext, user_id: int) -> UserRow:
    user = context.store.get(SheetName.USERS, user_id)
    if user is None:
        raise MissingReferenceError("user", user_id)
    return user


def list_users(context: RuntimeContext) -> List[UserRow]:
    return sorted(context.store.rows(SheetName.USERS), key=lambda user: user.created_at, reverse=True)


def user_names(context: RuntimeContext) -> Dict[int, str]:
    return {user.user_id: user.name for user in context.store.rows(SheetName.USERS)}


def update_user(
    context: RuntimeContext,
    user_id: int,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[Role] = None,
    status: Optional[RecordStatus] = None,
) -> UserRow:
    """Change a user's details; ``None`` keeps the stored value.

    Raises:
        MissingReferenceError: If ``user_id`` is unknown.
        ConflictError: If another user already has ``email``.
        InvalidInputError: If a field is blank or an enum value is unknown.
    """
    values: Dict[str, Any] = {}
    if name is not None:
        if not name.strip():
            raise InvalidInputError("name", "User name is required")
        values["name"] = name.strip()
    if email is not None:
        if not email.strip():
            raise InvalidInputError("email", "User email is required")
        values["email"] = email.strip()
    if role is not None:
        if not isinstance(role, Role):
            raise InvalidInputError("role", "Role must be admin or sales")
        values["role"] = role
    if status is not None:
        values["status"] = _require_status(status)
    store = context.store
    with store.transaction():
        user = get_user(context, user_id)
        if "email" in values and store.rows(
            SheetName.USERS,
            lambda other: other.email == values["email"] and other.user_id != user_id,
        ):
            raise ConflictError("user", "email", values["email"])
        updated = store.replace(SheetName.USERS, replace(user, **values))
    log.info("Updated user %d: %s", user_id, ", ".join(sorted(values)) or "no fields")
    return updated
