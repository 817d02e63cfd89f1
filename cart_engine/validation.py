"""Validation helpers for checkout precondition checks."""

from collections.abc import Mapping, Sequence
from typing import Any

from .errors import CheckoutValidationError, errmsg
from .models import CartItem


def require_not_empty(items: Sequence[Any], error_msg: str) -> None:
    """Require that a sequence has at least one element."""
    if not items:
        raise CheckoutValidationError(error_msg)


def require_positive(value: int, error_msg: str) -> None:
    """Require that a value is greater than zero."""
    if value <= 0:
        raise CheckoutValidationError(error_msg)


def require_exists(field: str, error_msg: str) -> None:
    """Require that a field is non-empty."""
    if not field:
        raise CheckoutValidationError(error_msg)


def require_checkout_ready(items: Sequence[CartItem]) -> None:
    """Non-empty cart whose every line has a product and a positive quantity."""
    require_not_empty(items, errmsg.CART_INVALID)
    for item in items:
        require_exists(item.product_id, errmsg.CART_INVALID)
        require_positive(item.quantity, errmsg.CART_INVALID)


def missing_fields(values: Mapping[str, Any], required: Mapping[str, str]) -> dict[str, str]:
    """Map each blank required field to its message."""
    return {
        name: message
        for name, message in required.items()
        if not str(values.get(name) or "").strip()
    }


def require_fields(values: Mapping[str, Any], required: Mapping[str, str], error_msg: str) -> None:
    """Require every listed field; the error carries one message per field."""
    problems = missing_fields(values, required)
    if problems:
        raise CheckoutValidationError(error_msg, problems)
