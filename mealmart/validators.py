"""
Business validation utilities for the MealMart orders service.

Provides checks beyond schema validation. Each validator returns a
``(is_valid, error_message)`` tuple; callers decide which error to raise.
"""
from typing import List, Tuple, Type
from enum import Enum
from . import schemas
from .models import ItemStatus, ShippingStatus

MAX_ORDER_LINES = 100
MAX_LINE_QUANTITY = 10000


def validate_order_items(items: List[schemas.OrderItemCreate]) -> Tuple[bool, str]:
    """
    Validate requested order lines for business rules.

    Args:
        items: List of requested order lines

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not items:
        return False, "Order is not specified"

    if len(items) > MAX_ORDER_LINES:
        return False, f"Order cannot contain more than {MAX_ORDER_LINES} items"

    # One line per meal so a line can be addressed by its product
    product_ids = [item.product for item in items]
    if len(product_ids) != len(set(product_ids)):
        return False, "Order contains the same meal more than once"

    for item in items:
        if item.quantity <= 0:
            return False, f"Meal {item.product}: quantity must be positive"

        if item.quantity > MAX_LINE_QUANTITY:
            return False, f"Meal {item.product}: quantity exceeds maximum ({MAX_LINE_QUANTITY})"

    return True, ""


def _validate_vocabulary(value: str, vocabulary: Type[Enum], label: str) -> Tuple[bool, str]:
    allowed = [member.value for member in vocabulary]
    if value not in allowed:
        return False, f"Invalid {label} '{value}'. Use one of: {', '.join(allowed)}"
    return True, ""


def validate_shipping_status(value: str) -> Tuple[bool, str]:
    """
    Validate that a shipping status belongs to the allowed vocabulary.

    Shipping transitions are not ordered: any allowed value may overwrite
    any other, independent of the payment status.
    """
    return _validate_vocabulary(value, ShippingStatus, "shipping status")


def validate_item_status(value: str) -> Tuple[bool, str]:
    """Validate that a line item status belongs to the allowed vocabulary."""
    return _validate_vocabulary(value, ItemStatus, "item status")
