"""
MealMart Orders Service API

This module implements the FastAPI application for the MealMart orders
workflow: placing orders with payment initiation, verifying payments,
fulfillment status updates, order listings and statistics.

Every response uses the envelope ``{status, statusCode, message, data}``;
list endpoints add a ``meta`` block with pagination.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    GET /meals: Browse meals (search, filter, price range, sort, paginate)
    POST /orders: Place an order and start payment (customer)
    GET /orders: List all orders (admin)
    GET /orders/verify: Verify a payment by gateway handle (customer)
    GET /orders/my-orders: List own orders (customer)
    GET /orders/provider-orders: List orders containing own meals (provider)
    GET /orders/pending: List orders awaiting fulfillment (admin)
    PUT /orders/item-status: Update one line item's status (provider)
    PUT /orders/shipping-status: Update an order's shipping status (admin)
    GET /orders/stats/{admin,provider,customer}: Role statistics
    GET /orders/{order_id}: Get a single order (owner or admin)
    GET /orders/{order_id}/timeline: Order event history (owner or admin)

Attributes:
    app (FastAPI): The FastAPI application instance titled "mealmart-orders"
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Request, status
from sqlalchemy.orm import Session

from . import auth, models, orders, schemas, stats, webhooks
from .database import engine, get_db
from .errors import register_exception_handlers, send_response
from .query import QueryBuilder

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

MEAL_SEARCH_FIELDS = ["meal_name", "description", "category"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="mealmart-orders", lifespan=lifespan)
register_exception_handlers(app)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "127.0.0.1"


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the orders service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


@app.get("/meals")
def list_meals(request: Request, db: Session = Depends(get_db)):
    """
    Browse the meal catalog.

    Query parameters:
        searchTerm: Substring matched against name, description and category
        priceMin, priceMax: Inclusive price bounds
        sort, page, limit, fields: Standard list controls
        any other meal column (e.g. category, inStock): Equality filter
    """
    builder = (
        QueryBuilder(db.query(models.Meal), dict(request.query_params), models.Meal)
        .search(MEAL_SEARCH_FIELDS)
        .filter()
        .filter_by_range(["price"])
        .sort()
        .paginate()
        .fields()
    )
    meals = [builder.project(schemas.Meal.model_validate(meal).dump()) for meal in builder.all()]
    return send_response(status.HTTP_200_OK, "Meals retrieved successfully", meals, builder.count_total())


@app.post("/orders")
async def create_order(
    payload: schemas.OrderCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_customer),
):
    """
    Place an order and start its payment (customer only).

    Prices are read from the catalog; the response carries the new order's
    ID and the gateway checkout URL the customer should be redirected to.

    Raises:
        400 if the lines are malformed
        403 if a meal belongs to an unverified organization
        404 if the customer or a meal does not exist
        409 if a meal is out of stock
        502 if the payment gateway fails (the order stays Pending)
    """
    session = await orders.create_order(db, current_user, payload, _client_ip(request))
    return send_response(status.HTTP_201_CREATED, "Order placed successfully", session)


@app.get("/orders")
def list_orders(
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """List all orders with search, filters, sort, pagination and projection (admin only)."""
    data, meta = orders.list_orders(db, dict(request.query_params))
    return send_response(status.HTTP_200_OK, "Orders retrieved successfully", data, meta)


@app.get("/orders/verify")
async def verify_payment(
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_customer),
):
    """
    Verify a payment with the gateway and reconcile the order.

    The ``order_id`` query parameter is the gateway correlation handle the
    customer returns with after checkout. Safe to call repeatedly.
    """
    handle = request.query_params.get("order_id") or request.query_params.get("orderId")
    records = await orders.verify_payment(db, handle)
    return send_response(status.HTTP_200_OK, "Order verified successfully", records)


@app.get("/orders/my-orders")
def list_my_orders(
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_customer),
):
    """List the current customer's orders."""
    data, meta = orders.list_orders_for_customer(db, current_user, dict(request.query_params))
    return send_response(status.HTTP_200_OK, "Orders retrieved successfully", data, meta)


@app.get("/orders/provider-orders")
def list_provider_orders(
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_provider),
):
    """
    List orders containing the provider's meals, narrowed to the provider's own lines.
    """
    data, meta = orders.list_orders_for_provider(db, current_user, dict(request.query_params))
    return send_response(status.HTTP_200_OK, "Provider orders retrieved successfully", data, meta)


@app.get("/orders/pending")
def list_pending_orders(
    request: Request,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """List orders whose shipping is still Pending or Preparing (admin only)."""
    data, meta = orders.list_pending_orders(db, dict(request.query_params))
    return send_response(status.HTTP_200_OK, "Pending orders retrieved successfully", data, meta)


@app.put("/orders/item-status")
def update_item_status(
    payload: schemas.LineItemStatusUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_provider),
):
    """
    Update the fulfillment status of one line item (provider only).

    Raises:
        400 if the status is not an item status
        404 if the order or the line does not exist
    """
    order = orders.update_line_item_status(
        db,
        order_id=payload.order_id,
        product_id=payload.product_id,
        status=payload.status,
        user_id=current_user.id,
    )
    return send_response(
        status.HTTP_200_OK,
        "Product status updated successfully",
        schemas.Order.model_validate(order).dump(),
    )


@app.put("/orders/shipping-status")
async def update_shipping_status(
    payload: schemas.ShippingStatusUpdate,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    Overwrite an order's shipping status (admin only).

    Raises:
        400 if the status is not a shipping status
        404 if the order does not exist
    """
    order, old_status = orders.update_shipping_status(
        db,
        order_id=payload.order_id,
        status=payload.status,
        user_id=current_user.id,
    )
    if old_status != order.shipping_status:
        webhooks.notify_shipping_status_changed(order.id, old_status, order.shipping_status)
    return send_response(
        status.HTTP_200_OK,
        "Shipping status updated successfully",
        schemas.Order.model_validate(order).dump(),
    )


@app.get("/orders/stats/admin")
def get_admin_stats(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """Platform-wide order, revenue and stock statistics (admin only)."""
    return send_response(status.HTTP_200_OK, "Admin stats retrieved successfully", stats.admin_stats(db))


@app.get("/orders/stats/provider")
def get_provider_stats(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_provider),
):
    """Statistics for the provider's organization (provider only)."""
    return send_response(
        status.HTTP_200_OK,
        "Provider stats retrieved successfully",
        stats.provider_stats(db, current_user.id),
    )


@app.get("/orders/stats/customer")
def get_customer_stats(
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.require_customer),
):
    """Statistics for the current customer (customer only)."""
    return send_response(
        status.HTTP_200_OK,
        "Customer stats retrieved successfully",
        stats.customer_stats(db, current_user.email),
    )


@app.get("/orders/{order_id}")
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """
    Get a single order by ID (owner or admin).

    Raises:
        403 if not authorized
        404 if order not found
    """
    order = orders.get_order_for_user(db, current_user, order_id)
    return send_response(
        status.HTTP_200_OK,
        "Order retrieved successfully",
        schemas.Order.model_validate(order).dump(),
    )


@app.get("/orders/{order_id}/timeline")
def get_order_timeline(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """
    Get the timeline of events for an order (owner or admin).

    Returns:
        List of order events in chronological order
    """
    events = orders.get_order_timeline(db, current_user, order_id)
    return send_response(
        status.HTTP_200_OK,
        "Order timeline retrieved successfully",
        [schemas.OrderEvent.model_validate(event).dump() for event in events],
    )
