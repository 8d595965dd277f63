"""
Inventory gate: validates and prices the lines of a new order.

Prices always come from a server-side read of the catalog; the client only
names meals and quantities. Any failing line aborts the whole order.
"""
import logging
import os
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple
from sqlalchemy.orm import Session

from . import crud, schemas
from .errors import ForbiddenError, NotFoundError, OutOfStockError

logger = logging.getLogger(__name__)

# Markup applied to every line at order time (10% service fee)
SERVICE_MULTIPLIER = Decimal(os.getenv("SERVICE_MULTIPLIER", "1.10"))
CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round a monetary amount half-up to cents."""
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def price_line_items(db: Session, items: List[schemas.OrderItemCreate]) -> Tuple[List[dict], Decimal]:
    """
    Check every requested line against the catalog and price the order.

    Args:
        db: Database session
        items: Requested lines (meal ID and quantity)

    Returns:
        Tuple of (priced lines, order total). Each line carries position,
        product_id, quantity, org_id and unit_price snapshots.

    Raises:
        NotFoundError: If a meal does not exist
        OutOfStockError: If a meal is flagged out of stock or lacks the quantity
        ForbiddenError: If a meal's organization is not verified
    """
    meals = crud.get_meals_by_ids(db, (item.product for item in items))

    lines = []
    total = Decimal("0")
    for position, item in enumerate(items):
        meal = meals.get(item.product)
        if meal is None:
            raise NotFoundError(f"Meal {item.product} does not exist!")
        if not meal.in_stock or meal.quantity < item.quantity:
            raise OutOfStockError(f"Meal '{meal.meal_name}' is out of stock!")
        if meal.organization is None or not meal.organization.is_verified:
            raise ForbiddenError(f"Meal '{meal.meal_name}' belongs to an unverified organization!")

        unit_price = Decimal(str(meal.price))
        total += unit_price * item.quantity * SERVICE_MULTIPLIER
        lines.append({
            "position": position,
            "product_id": meal.id,
            "quantity": item.quantity,
            "org_id": meal.org_id,
            "unit_price": unit_price,
        })

    return lines, to_money(total)


def reserve_stock(db: Session, lines: List[dict]) -> None:
    """
    Reserve stock for every priced line inside the caller's transaction.

    A line that loses a race for the last units fails the whole order; the
    caller rolls back so earlier reservations are released too.

    Args:
        db: Database session
        lines: Priced lines from price_line_items()

    Raises:
        OutOfStockError: If any line can no longer be reserved
    """
    for line in lines:
        if not crud.reserve_meal_stock(db, line["product_id"], line["quantity"]):
            logger.info(f"Stock reservation failed for meal {line['product_id']} x{line['quantity']}")
            raise OutOfStockError(f"Meal {line['product_id']} is out of stock!")


def release_stock(db: Session, lines: List[dict]) -> None:
    """Give reserved units back to stock inside the caller's transaction."""
    for line in lines:
        crud.release_meal_stock(db, line["product_id"], line["quantity"])
