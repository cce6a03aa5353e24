"""Append-only stock ledger.

Every change to a product's on-hand quantity is recorded here as an
immutable :class:`~stockbill.data_manager.StockMovementRow`. The cached
``stock_qty`` on the product is only ever changed by :func:`post_movement`,
which appends the movement and applies its effect in the same unit of work,
so replaying a product's movements always reproduces its stock level.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from . import log
from .constants import MovementType, SheetName
from .context import RuntimeContext, resolve_timestamp
from .data_manager import Actor, ProductRow, StockMovementRow
from .errors import InvalidInputError, MissingReferenceError


def _require_product(context: RuntimeContext, product_id: int) -> ProductRow:
    product = context.store.get(SheetName.PRODUCTS, product_id)
    if product is None:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError("product", product_id)
    return product


def _require_quantity_change(quantity_change: object) -> int:
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise InvalidInputError("quantity_change", "Quantity change must be a whole number")
    return quantity_change


def apply_movement(
    context: RuntimeContext,
    product_id: int,
    movement_type: MovementType,
    quantity_change: int,
    reason: Optional[str],
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> StockMovementRow:
    """Append one movement record and return it.

    Only the ledger row is written. Callers that change stock must also keep
    the product's cached quantity in sync in the same transaction; use
    :func:`post_movement` for that.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        InvalidInputError: If the type or quantity change is malformed.
    """

    if not isinstance(movement_type, MovementType):
        raise InvalidInputError("type", f"Unsupported movement type: {movement_type}")
    quantity_change = _require_quantity_change(quantity_change)

    store = context.store
    with store.transaction():
        _require_product(context, product_id)
        movement = StockMovementRow(
            movement_id=store.next_id(SheetName.STOCK_MOVEMENTS),
            product_id=product_id,
            movement_type=movement_type,
            quantity_change=quantity_change,
            reason=reason,
            user_id=actor.user_id,
            created_at=resolve_timestamp(timestamp),
        )
        store.insert(SheetName.STOCK_MOVEMENTS, movement)

    log.debug(
        "Appended %s movement %d for product %d (change=%+d)",
        movement_type.value,
        movement.movement_id,
        product_id,
        quantity_change,
    )
    return movement


def post_movement(
    context: RuntimeContext,
    product_id: int,
    movement_type: MovementType,
    quantity_change: int,
    reason: Optional[str],
    actor: Actor,
    *,
    timestamp: Optional[datetime] = None,
) -> Tuple[ProductRow, StockMovementRow]:
    """Append a movement and apply its effect to the product's stock.

    Returns:
        tuple[ProductRow, StockMovementRow]: The updated product and the new
            ledger row.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        InvalidInputError: If the resulting stock would be negative.
    """

    if not isinstance(movement_type, MovementType):
        raise InvalidInputError("type", f"Unsupported movement type: {movement_type}")
    quantity_change = _require_quantity_change(quantity_change)
    moment = resolve_timestamp(timestamp)
    store = context.store
    with store.transaction():
        product = _require_product(context, product_id)
        new_quantity = product.stock_qty + quantity_change
        if new_quantity < 0:
            log.warning(
                "Rejected %s on '%s': stock %d %+d would be negative",
                movement_type.value,
                product.sku,
                product.stock_qty,
                quantity_change,
            )
            raise InvalidInputError(
                "quantity_change",
                f"Stock for '{product.name}' cannot go below zero "
                f"(on hand {product.stock_qty}, change {quantity_change:+d})",
            )
        movement = apply_movement(
            context,
            product_id,
            movement_type,
            quantity_change,
            reason,
            actor,
            timestamp=moment,
        )
        updated = replace(product, stock_qty=new_quantity, updated_at=moment)
        store.replace(SheetName.PRODUCTS, updated)
    return updated, movement


def history(context: RuntimeContext, product_id: int) -> List[StockMovementRow]:
    """Return a product's movements, newest first.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """

    with context.store.reading() as store:
        _require_product(context, product_id)
        movements = store.rows(
            SheetName.STOCK_MOVEMENTS,
            lambda movement: movement.product_id == product_id,
        )
    return sorted(movements, key=lambda movement: (movement.created_at, movement.movement_id), reverse=True)


def replay_balance(context: RuntimeContext, product_id: int) -> int:
    """Sum every recorded quantity change for ``product_id``."""

    return sum(movement.quantity_change for movement in history(context, product_id))


def verify_stock_integrity(context: RuntimeContext) -> Dict[int, Tuple[int, int]]:
    """Compare cached stock levels with the ledger replay.

    Returns:
        dict[int, tuple[int, int]]: ``{product_id: (stock_qty, replayed)}`` for
            every product whose cached quantity disagrees with its ledger. An
            empty mapping means the store is consistent.
    """

    with context.store.reading() as store:
        products = store.rows(SheetName.PRODUCTS)
        balances: Dict[int, int] = {}
        for movement in store.rows(SheetName.STOCK_MOVEMENTS):
            balances[movement.product_id] = balances.get(movement.product_id, 0) + movement.quantity_change

    mismatches = {
        product.product_id: (product.stock_qty, balances.get(product.product_id, 0))
        for product in products
        if product.stock_qty != balances.get(product.product_id, 0)
    }
    if mismatches:
        log.error("Stock ledger mismatch for products: %s", sorted(mismatches))
    return mismatches
