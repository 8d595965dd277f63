"""
Order lifecycle: creation with payment initiation, payment verification,
fulfillment status updates and the order read paths.

Payment and shipping are independent status axes. Payment status is only
written by verification; shipping and line item statuses are written by
admins and providers.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from . import crud, inventory, models, schemas, validators, webhooks
from .auth import CurrentUser
from .clients import payment_client
from .errors import ForbiddenError, NotFoundError, UpstreamFailureError, ValidationError
from .models import PaymentStatus, ShippingStatus, UserRole
from .query import QueryBuilder

logger = logging.getLogger(__name__)

# Gateway bank status vocabulary -> payment status
BANK_STATUS_TO_PAYMENT = {
    "Success": PaymentStatus.PAID,
    "Failed": PaymentStatus.FAILED,
    "Cancel": PaymentStatus.CANCELLED,
}

# Payment outcomes that end a pending order and give its reserved stock back
RELEASING_STATUSES = {PaymentStatus.FAILED, PaymentStatus.CANCELLED}

ORDER_SEARCH_FIELDS = ["id", "transaction_id"]


def _resolve_customer(db: Session, email: str) -> models.User:
    user = crud.get_user_by_email(db, email)
    if user is None or user.is_deleted:
        raise NotFoundError("User not found or deleted")
    return user


async def create_order(
    db: Session,
    current_user: CurrentUser,
    payload: schemas.OrderCreate,
    client_ip: str,
) -> Dict[str, Any]:
    """
    Place an order and start its payment.

    The order, its lines and the stock reservations commit together before
    the gateway is called, so the total is fixed before any external call.
    If the gateway then fails, the order stays Pending without a handle for
    later reconciliation and the failure is reported to the caller.

    Args:
        db: Database session
        current_user: Authenticated customer
        payload: Requested lines
        client_ip: Customer's network address, forwarded to the gateway

    Returns:
        Dict with ``orderId`` and the gateway's ``checkoutUrl``

    Raises:
        ValidationError: If the lines are malformed
        NotFoundError: If the customer or a meal does not exist
        OutOfStockError: If a meal is out of stock
        ForbiddenError: If a meal's organization is not verified
        UpstreamFailureError: If the payment gateway fails
    """
    is_valid, error_message = validators.validate_order_items(payload.products)
    if not is_valid:
        raise ValidationError(error_message)

    user = _resolve_customer(db, current_user.email)

    try:
        lines, total_price = inventory.price_line_items(db, payload.products)
        inventory.reserve_stock(db, lines)
        order = crud.create_order(db, user_id=user.id, total_price=total_price, lines=lines)
        order_id = order.id
        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="created",
            description=f"Order placed with {len(lines)} item(s), total {total_price}",
            new_value=PaymentStatus.PENDING.value,
            user_id=user.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Order {order_id} created for user {user.id} with total {total_price}")

    try:
        payment = await payment_client.initiate_payment(
            amount=total_price,
            order_id=order_id,
            customer_name=user.name,
            customer_email=user.email,
            client_ip=client_ip,
            customer_address=user.address or user.city,
            customer_phone=user.phone,
            customer_city=user.city,
        )
    except UpstreamFailureError as e:
        logger.error(f"Order {order_id} left pending, payment initiation failed: {e.message}")
        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="payment_initiation_failed",
            description=e.message,
            user_id=user.id,
        )
        db.commit()
        raise

    handle = str(payment["sp_order_id"])
    crud.attach_transaction(db, order_id, handle, payment.get("transactionStatus"))
    crud.log_order_event(
        db=db,
        order_id=order_id,
        event_type="payment_initiated",
        description="Payment initiated with the gateway",
        new_value=handle,
        user_id=user.id,
    )
    db.commit()

    webhooks.notify_order_created(order_id, str(total_price))
    return schemas.CheckoutSession(order_id=order_id, checkout_url=payment["checkout_url"]).dump()


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


async def verify_payment(db: Session, transaction_id: str) -> List[Dict[str, Any]]:
    """
    Reconcile an order with the gateway's authoritative payment status.

    Safe to call any number of times from a redirect, webhook or poll: each
    call overwrites the transaction block with the latest gateway state.
    An unknown handle is a no-op. A Pending order whose payment fails or is
    cancelled gives its reserved stock back in the same transaction, once.

    Args:
        db: Database session
        transaction_id: Gateway correlation handle

    Returns:
        The gateway's verification records (empty if the handle is unknown)

    Raises:
        ValidationError: If no handle is given
        UpstreamFailureError: If the payment gateway fails
    """
    if not transaction_id:
        raise ValidationError("order_id is required")

    records = await payment_client.verify_payment(transaction_id)
    if not records:
        logger.info(f"Gateway has no record for transaction {transaction_id}")
        return records

    record = records[0]
    bank_status = record.get("bank_status")
    new_status = BANK_STATUS_TO_PAYMENT.get(bank_status)
    transaction = {
        "id": transaction_id,
        "transactionStatus": _as_text(record.get("transaction_status")),
        "bankStatus": _as_text(bank_status),
        "spCode": _as_text(record.get("sp_code")),
        "spMessage": _as_text(record.get("sp_message")),
        "method": _as_text(record.get("method")),
        "dateTime": _as_text(record.get("date_time")),
    }

    order = crud.get_order_by_transaction(db, transaction_id)
    if order is None:
        logger.warning(f"No order carries transaction {transaction_id}")
        return records
    order_id, old_status = order.id, order.payment_status
    lines = [{"product_id": item.product_id, "quantity": item.quantity} for item in order.items]

    changed = False
    if new_status is not None and new_status.value != old_status:
        # Conditional on the observed status: only one caller performs a given transition
        changed = crud.apply_payment_verification(
            db, transaction_id, transaction, new_status.value, expected_status=old_status,
        ) == 1
    if not changed:
        crud.apply_payment_verification(db, transaction_id, transaction, None)

    if changed:
        if old_status == PaymentStatus.PENDING.value and new_status in RELEASING_STATUSES:
            inventory.release_stock(db, lines)
            logger.info(f"Order {order_id} payment {new_status.value}, released stock for {len(lines)} line(s)")
        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="payment_verified",
            description=f"Payment {bank_status} via {transaction['method'] or 'unknown method'}",
            old_value=old_status,
            new_value=new_status.value,
        )
    db.commit()

    final_status = new_status.value if changed else old_status
    logger.info(f"Order {order_id} verified: bank status {bank_status}, payment {final_status}")
    webhooks.notify_payment_verified(order_id, final_status)
    return records


def update_line_item_status(
    db: Session,
    order_id: str,
    product_id: int,
    status: str,
    user_id: Optional[int] = None,
) -> models.Order:
    """
    Update the fulfillment status of one line item.

    Args:
        db: Database session
        order_id: ID of the order
        product_id: Meal ID of the line
        status: New item status
        user_id: Acting user, recorded on the timeline (optional)

    Returns:
        The updated order

    Raises:
        ValidationError: If the status is not an item status
        NotFoundError: If the order or the line does not exist
    """
    is_valid, error_message = validators.validate_item_status(status)
    if not is_valid:
        raise ValidationError(error_message)

    if crud.get_order(db, order_id) is None:
        raise NotFoundError("Order not found!")

    updated = crud.update_line_item_status(db, order_id, product_id, status)
    if not updated:
        db.rollback()
        raise NotFoundError("Product not found in this order!")

    crud.log_order_event(
        db=db,
        order_id=order_id,
        event_type="item_status_changed",
        description=f"Meal {product_id} marked {status}",
        new_value=status,
        user_id=user_id,
    )
    db.commit()
    return crud.get_order(db, order_id)


def update_shipping_status(
    db: Session,
    order_id: str,
    status: str,
    user_id: Optional[int] = None,
) -> Tuple[models.Order, str]:
    """
    Overwrite an order's shipping status, independent of payment.

    Args:
        db: Database session
        order_id: ID of the order
        status: New shipping status
        user_id: Acting user, recorded on the timeline (optional)

    Returns:
        Tuple of (updated order, previous shipping status)

    Raises:
        ValidationError: If the status is not a shipping status
        NotFoundError: If the order does not exist
    """
    is_valid, error_message = validators.validate_shipping_status(status)
    if not is_valid:
        raise ValidationError(error_message)

    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found!")
    old_status = order.shipping_status

    crud.update_shipping_status(db, order_id, status)
    if old_status != status:
        crud.log_order_event(
            db=db,
            order_id=order_id,
            event_type="shipping_status_changed",
            description=f"Shipping status changed from '{old_status}' to '{status}'",
            old_value=old_status,
            new_value=status,
            user_id=user_id,
        )
    db.commit()
    logger.info(f"Order {order_id} shipping status {old_status} -> {status}")
    return crud.get_order(db, order_id), old_status


def _order_query(db: Session):
    return db.query(models.Order).options(
        selectinload(models.Order.items).selectinload(models.OrderItem.product),
        selectinload(models.Order.items).selectinload(models.OrderItem.organization),
        selectinload(models.Order.user),
    )


def _serialize(builder: QueryBuilder, orders: List[models.Order]) -> List[Dict[str, Any]]:
    return [builder.project(schemas.Order.model_validate(order).dump()) for order in orders]


def _enrich(order: models.Order, org_id: Optional[int] = None) -> Dict[str, Any]:
    """Join an order with display data; with ``org_id`` keep only that organization's lines."""
    lines = [item for item in order.items if org_id is None or item.org_id == org_id]
    products = [
        schemas.EnrichedOrderItem(
            product=item.product_id,
            quantity=item.quantity,
            status=item.status,
            meal_details=schemas.MealSummary.model_validate(item.product) if item.product else None,
            organization_details=(
                schemas.OrganizationSummary.model_validate(item.organization) if item.organization else None
            ),
        )
        for item in lines
    ]
    enriched = schemas.EnrichedOrder(
        id=order.id,
        user_details=schemas.UserSummary.model_validate(order.user),
        products=products,
        payment_status=order.payment_status,
        shipping_status=order.shipping_status,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )
    if org_id is None:
        enriched.total_price = order.total_price
    else:
        enriched.provider_subtotal = inventory.to_money(
            sum(item.unit_price * item.quantity for item in lines)
        )
    return enriched.model_dump(by_alias=True, exclude_none=True)


def list_orders(db: Session, query: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    List all orders (admin view) through the query pipeline.

    Args:
        db: Database session
        query: Client query parameters

    Returns:
        Tuple of (serialized orders, pagination meta)
    """
    builder = (
        QueryBuilder(_order_query(db), query, models.Order)
        .search(ORDER_SEARCH_FIELDS)
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    return _serialize(builder, builder.all()), builder.count_total()


def list_orders_for_customer(
    db: Session,
    current_user: CurrentUser,
    query: Dict[str, Any],
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    List the current customer's orders.

    Raises:
        NotFoundError: If the customer does not exist or is deleted
    """
    user = _resolve_customer(db, current_user.email)
    scoped = _order_query(db).filter(models.Order.user_id == user.id)
    builder = (
        QueryBuilder(scoped, query, models.Order)
        .search(ORDER_SEARCH_FIELDS)
        .filter(exclude=("user_id",))
        .sort()
        .paginate()
        .fields()
    )
    return _serialize(builder, builder.all()), builder.count_total()


def list_orders_for_provider(
    db: Session,
    current_user: CurrentUser,
    query: Dict[str, Any],
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    List orders containing the provider's meals.

    Each order is narrowed to the provider organization's own lines; other
    providers' lines and the shared order total are never included.

    Raises:
        NotFoundError: If the provider has no organization
    """
    org = crud.get_organization_by_owner(db, current_user.id)
    if org is None:
        raise NotFoundError("Organization not found!")

    order_ids = select(models.OrderItem.order_id).where(models.OrderItem.org_id == org.id)
    scoped = _order_query(db).filter(models.Order.id.in_(order_ids))
    hidden = ("total_price", "user_id")
    builder = (
        QueryBuilder(scoped, query, models.Order)
        .filter(exclude=hidden)
        .sort(exclude=hidden)
        .paginate()
    )
    return [_enrich(order, org_id=org.id) for order in builder.all()], builder.count_total()


def list_pending_orders(db: Session, query: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    List orders still awaiting fulfillment (shipping Pending or Preparing).
    """
    scoped = _order_query(db).filter(
        models.Order.shipping_status.in_([
            ShippingStatus.PENDING.value,
            ShippingStatus.PREPARING.value,
        ])
    )
    builder = (
        QueryBuilder(scoped, query, models.Order)
        .filter(exclude=("shipping_status",))
        .sort()
        .paginate()
    )
    return [_enrich(order) for order in builder.all()], builder.count_total()


def get_order_for_user(db: Session, current_user: CurrentUser, order_id: str) -> models.Order:
    """
    Fetch one order for its owner or an admin.

    Raises:
        NotFoundError: If the order does not exist
        ForbiddenError: If the caller neither owns the order nor is an admin
    """
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFoundError("Order not found!")
    if current_user.role != UserRole.ADMIN.value and order.user_id != current_user.id:
        raise ForbiddenError("Not authorized to access this order")
    return order


def get_order_timeline(db: Session, current_user: CurrentUser, order_id: str) -> List[models.OrderEvent]:
    """Return the order's events in chronological order (owner or admin)."""
    get_order_for_user(db, current_user, order_id)
    return crud.get_order_events(db, order_id)
