"""Recoverable error taxonomy raised by the business modules.

Every exception derives from :class:`BusinessRuleViolation` so callers can
catch the whole family at one seam. Each carries the structured fields a
front-end needs to tell the user which product, bill, or field was at fault.
"""

from __future__ import annotations

from typing import Any, Optional


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, bill, category, or user is unknown."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"Unknown {entity}: {key}", entity=entity, key=key)
        self.entity = entity
        self.key = key


class ConflictError(BusinessRuleViolation):
    """Raised when a unique field (SKU, email, bill number) is already taken."""

    def __init__(self, entity: str, field: str, value: object) -> None:
        super().__init__(
            f"A {entity} with {field} '{value}' already exists",
            entity=entity,
            field=field,
            value=value,
        )
        self.entity = entity
        self.field = field
        self.value = value


class InvalidInputError(BusinessRuleViolation, ValueError):
    """Raised when a required field is missing or malformed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, field=field)
        self.field = field


class InactiveProductError(BusinessRuleViolation):
    """Raised when an inactive product is used in a sale."""

    def __init__(self, product_id: int, product_name: str) -> None:
        super().__init__(
            f"Product '{product_name}' (id {product_id}) is inactive",
            product_id=product_id,
            product_name=product_name,
        )
        self.product_id = product_id
        self.product_name = product_name


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale requests more units than are on hand."""

    def __init__(self, product_id: int, product_name: str, available: int, requested: int) -> None:
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, requested: {requested}',
            product_id=product_id,
            product_name=product_name,
            available=available,
            requested=requested,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class AlreadyCancelledError(BusinessRuleViolation):
    """Raised when cancelling a bill whose status is already cancelled."""

    def __init__(self, bill_number: str) -> None:
        super().__init__(f"Bill {bill_number} is already cancelled", bill_number=bill_number)
        self.bill_number = bill_number


class PermissionDeniedError(BusinessRuleViolation):
    """Raised by the caller layer when the actor's role may not run a command."""

    def __init__(self, action: str, role: Optional[str]) -> None:
        super().__init__(f"Admin access required to {action}", action=action, role=role)
        self.action = action
        self.role = role


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "ConflictError",
    "InvalidInputError",
    "InactiveProductError",
    "InsufficientStockError",
    "AlreadyCancelledError",
    "PermissionDeniedError",
]
