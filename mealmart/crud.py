"""
CRUD (Create, Read, Update, Delete) operations for the MealMart orders service.

This module contains the database operations behind the order workflow.
Status transitions and stock reservations are single UPDATE statements so
the database's row-level atomicity is the only concurrency control needed.
Functions here never commit; the calling operation owns the transaction.
"""
from typing import Dict, Iterable, List, Optional
from decimal import Decimal
import logging
from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload
from . import models

# Set up logging
logger = logging.getLogger(__name__)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """
    Retrieve a user by email.

    Args:
        db: Database session
        email: Email to search for

    Returns:
        User object or None if not found
    """
    return db.query(models.User).filter(models.User.email == email).first()


def get_organization_by_owner(db: Session, owner_id: int) -> Optional[models.Organization]:
    """
    Retrieve the organization owned by a provider.

    Args:
        db: Database session
        owner_id: ID of the provider user

    Returns:
        Organization object or None if the provider has none
    """
    return db.query(models.Organization).filter(models.Organization.owner_id == owner_id).first()


def get_meals_by_ids(db: Session, meal_ids: Iterable[int]) -> Dict[int, models.Meal]:
    """
    Retrieve meals with their organizations in one batched read.

    Args:
        db: Database session
        meal_ids: IDs of the meals to load

    Returns:
        Mapping of meal ID to Meal; missing IDs are absent from the mapping
    """
    meal_ids = list(meal_ids)
    if not meal_ids:
        return {}
    meals = (
        db.query(models.Meal)
        .options(selectinload(models.Meal.organization))
        .filter(models.Meal.id.in_(meal_ids))
        .all()
    )
    return {meal.id: meal for meal in meals}


def reserve_meal_stock(db: Session, meal_id: int, quantity: int) -> bool:
    """
    Atomically take ``quantity`` units of a meal out of stock.

    The decrement only applies while the meal is in stock with enough units,
    and clears the stock flag when the last unit goes.

    Args:
        db: Database session
        meal_id: ID of the meal
        quantity: Units to reserve

    Returns:
        True if the units were reserved, False if stock was insufficient
    """
    remaining = models.Meal.quantity - quantity
    result = db.execute(
        update(models.Meal)
        .where(
            models.Meal.id == meal_id,
            models.Meal.in_stock.is_(True),
            models.Meal.quantity >= quantity,
        )
        .values(quantity=remaining, in_stock=remaining > 0)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_meal_stock(db: Session, meal_id: int, quantity: int) -> None:
    """
    Atomically return ``quantity`` units of a meal to stock.

    Args:
        db: Database session
        meal_id: ID of the meal
        quantity: Units to give back
    """
    db.execute(
        update(models.Meal)
        .where(models.Meal.id == meal_id)
        .values(quantity=models.Meal.quantity + quantity, in_stock=True)
        .execution_options(synchronize_session=False)
    )


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    """
    Retrieve a single order with its line items.

    Args:
        db: Database session
        order_id: ID of the order to retrieve

    Returns:
        Order object or None if not found
    """
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.id == order_id)
        .first()
    )


def get_order_by_transaction(db: Session, transaction_id: str) -> Optional[models.Order]:
    """
    Retrieve the order linked to a payment gateway correlation handle.

    Args:
        db: Database session
        transaction_id: Gateway handle stored at payment initiation

    Returns:
        Order object or None if no order carries the handle
    """
    return db.query(models.Order).filter(models.Order.transaction_id == transaction_id).first()


def create_order(
    db: Session,
    user_id: int,
    total_price: Decimal,
    lines: List[dict],
) -> models.Order:
    """
    Stage a new order in its initial state.

    NOTE: This function assumes pricing and stock reservation have already
    been performed. Use inventory.price_line_items() and
    inventory.reserve_stock() before calling this function.

    Args:
        db: Database session
        user_id: ID of the placing customer
        total_price: Total computed by the inventory gate
        lines: Priced lines with position, product_id, quantity, org_id, unit_price

    Returns:
        Created Order object (flushed, not committed)
    """
    db_order = models.Order(
        user_id=user_id,
        total_price=total_price,
        payment_status=models.PaymentStatus.PENDING.value,
        shipping_status=models.ShippingStatus.PENDING.value,
        items=[
            models.OrderItem(status=models.ItemStatus.PENDING.value, **line)
            for line in lines
        ],
    )
    db.add(db_order)
    db.flush()
    return db_order


def attach_transaction(db: Session, order_id: str, transaction_id: str, transaction_status: Optional[str]) -> None:
    """
    Record the gateway correlation returned by payment initiation.

    Args:
        db: Database session
        order_id: ID of the order
        transaction_id: Gateway handle
        transaction_status: Gateway status at initiation
    """
    db.execute(
        update(models.Order)
        .where(models.Order.id == order_id)
        .values(
            transaction_id=transaction_id,
            transaction={"id": transaction_id, "transactionStatus": transaction_status},
        )
        .execution_options(synchronize_session=False)
    )


def apply_payment_verification(
    db: Session,
    transaction_id: str,
    transaction: dict,
    payment_status: Optional[str],
    expected_status: Optional[str] = None,
) -> int:
    """
    Overwrite an order's transaction block with the latest gateway state.

    Args:
        db: Database session
        transaction_id: Gateway handle identifying the order
        transaction: Full transaction block to store
        payment_status: New payment status, or None to leave it unchanged
        expected_status: Only update while the order still has this payment status

    Returns:
        Number of orders updated (0 or 1)
    """
    values = {"transaction": transaction}
    if payment_status is not None:
        values["payment_status"] = payment_status
    statement = update(models.Order).where(models.Order.transaction_id == transaction_id)
    if expected_status is not None:
        statement = statement.where(models.Order.payment_status == expected_status)
    result = db.execute(
        statement
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def update_line_item_status(db: Session, order_id: str, product_id: int, status: str) -> int:
    """
    Set the status of one line item, leaving its siblings and the order untouched.

    Args:
        db: Database session
        order_id: ID of the order
        product_id: Meal ID identifying the line within the order
        status: New item status

    Returns:
        Number of lines updated (0 or 1)
    """
    result = db.execute(
        update(models.OrderItem)
        .where(
            models.OrderItem.order_id == order_id,
            models.OrderItem.product_id == product_id,
        )
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def update_shipping_status(db: Session, order_id: str, status: str) -> int:
    """
    Overwrite the shipping status of an order.

    Args:
        db: Database session
        order_id: ID of the order
        status: New shipping status

    Returns:
        Number of orders updated (0 or 1)
    """
    result = db.execute(
        update(models.Order)
        .where(models.Order.id == order_id)
        .values(shipping_status=status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def log_order_event(
    db: Session,
    order_id: str,
    event_type: str,
    description: str,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    user_id: Optional[int] = None,
) -> models.OrderEvent:
    """
    Add an event to an order's timeline.

    Args:
        db: Database session
        order_id: Order identifier
        event_type: Type of event (e.g., "created", "payment_verified")
        description: Human-readable description
        old_value: Previous value (optional)
        new_value: New value (optional)
        user_id: User who triggered the event (optional)

    Returns:
        The staged OrderEvent
    """
    event = models.OrderEvent(
        order_id=order_id,
        event_type=event_type,
        description=description,
        old_value=old_value,
        new_value=new_value,
        user_id=user_id,
    )
    db.add(event)
    return event


def get_order_events(db: Session, order_id: str) -> List[models.OrderEvent]:
    """
    Retrieve an order's timeline in chronological order.

    Args:
        db: Database session
        order_id: Order identifier

    Returns:
        List of OrderEvent objects
    """
    return (
        db.query(models.OrderEvent)
        .filter(models.OrderEvent.order_id == order_id)
        .order_by(models.OrderEvent.created_at.asc(), models.OrderEvent.id.asc())
        .all()
    )
