"""
Read-only statistics over persisted orders and meals.

Every status breakdown is keyed by the closed status enumeration with zero
defaults, so unknown values never reach a response. Revenue counts Paid
orders only; monthly sales always add up to the reported total revenue.
"""
import os
from decimal import Decimal
from typing import Any, Dict, List
from sqlalchemy import extract, func
from sqlalchemy.orm import Query, Session

from . import crud, models
from .errors import NotFoundError
from .inventory import to_money
from .models import ItemStatus, PaymentStatus, ShippingStatus

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _monthly_sales(query: Query, created_at, revenue_expr, count_expr, count_key: str) -> List[Dict[str, Any]]:
    """Group a query by year and month of ``created_at`` into chronological rows."""
    year = extract("year", created_at)
    month = extract("month", created_at)
    rows = (
        query.with_entities(
            year.label("year"),
            month.label("month"),
            func.coalesce(revenue_expr, 0).label("revenue"),
            count_expr.label("orders"),
        )
        .group_by(year, month)
        .order_by(year, month)
        .all()
    )
    return [
        {
            "year": int(row.year),
            "month": MONTH_NAMES[int(row.month) - 1],
            "revenue": to_money(row.revenue),
            count_key: int(row.orders),
        }
        for row in rows
    ]


def _sum_revenue(sales: List[Dict[str, Any]]) -> Decimal:
    return sum((entry["revenue"] for entry in sales), Decimal("0.00"))


def admin_stats(db: Session) -> Dict[str, Any]:
    """
    Platform-wide order statistics.

    Returns:
        dict: totalOrders, totalRevenue, totalProducts, lowStockProducts,
        paymentStatus ({status: {count, revenue}}), shippingStatus
        ({status: count}) and salesData (monthly Paid revenue)
    """
    total_orders = db.query(func.count(models.Order.id)).scalar() or 0
    total_products = db.query(func.count(models.Meal.id)).scalar() or 0
    low_stock_products = db.query(func.count(models.Meal.id)).filter(
        models.Meal.quantity < LOW_STOCK_THRESHOLD
    ).scalar() or 0

    payment_breakdown = {
        status.value: {"count": 0, "revenue": Decimal("0.00")} for status in PaymentStatus
    }
    payment_rows = db.query(
        models.Order.payment_status,
        func.count(models.Order.id),
        func.coalesce(func.sum(models.Order.total_price), 0),
    ).group_by(models.Order.payment_status).all()
    for status, count, revenue in payment_rows:
        if status in payment_breakdown:
            payment_breakdown[status] = {"count": count, "revenue": to_money(revenue)}

    shipping_breakdown = {status.value: 0 for status in ShippingStatus}
    shipping_rows = db.query(
        models.Order.shipping_status,
        func.count(models.Order.id),
    ).group_by(models.Order.shipping_status).all()
    for status, count in shipping_rows:
        if status in shipping_breakdown:
            shipping_breakdown[status] = count

    sales_data = _monthly_sales(
        db.query(models.Order).filter(models.Order.payment_status == PaymentStatus.PAID.value),
        models.Order.created_at,
        func.sum(models.Order.total_price),
        func.count(models.Order.id),
        "ordersCount",
    )

    return {
        "totalOrders": total_orders,
        "totalRevenue": _sum_revenue(sales_data),
        "totalProducts": total_products,
        "lowStockProducts": low_stock_products,
        "paymentStatus": payment_breakdown,
        "shippingStatus": shipping_breakdown,
        "salesData": sales_data,
    }


def provider_stats(db: Session, owner_id: int) -> Dict[str, Any]:
    """
    Statistics restricted to one provider organization's order lines.

    Revenue is attributed at the unit price captured when each order was
    placed, without the service fee.

    Args:
        db: Database session
        owner_id: ID of the provider user

    Returns:
        dict: organization, totalOrders, totalProducts, lowStockProducts,
        totalRevenue, paymentStatus, salesData and productStatus

    Raises:
        NotFoundError: If the provider has no organization
    """
    org = crud.get_organization_by_owner(db, owner_id)
    if org is None:
        raise NotFoundError("Organization not found for this provider")

    line_revenue = models.OrderItem.unit_price * models.OrderItem.quantity
    org_lines = (
        db.query(models.Order)
        .join(models.OrderItem, models.OrderItem.order_id == models.Order.id)
        .filter(models.OrderItem.org_id == org.id)
    )

    total_orders = db.query(func.count(func.distinct(models.OrderItem.order_id))).filter(
        models.OrderItem.org_id == org.id
    ).scalar() or 0
    total_products = db.query(func.count(models.Meal.id)).filter(
        models.Meal.org_id == org.id
    ).scalar() or 0
    low_stock_products = db.query(func.count(models.Meal.id)).filter(
        models.Meal.org_id == org.id,
        models.Meal.quantity < LOW_STOCK_THRESHOLD,
    ).scalar() or 0

    payment_breakdown = {
        status.value: {"orders": 0, "revenue": Decimal("0.00")} for status in PaymentStatus
    }
    payment_rows = org_lines.with_entities(
        models.Order.payment_status,
        func.count(func.distinct(models.Order.id)),
        func.coalesce(func.sum(line_revenue), 0),
    ).group_by(models.Order.payment_status).all()
    for status, count, revenue in payment_rows:
        if status in payment_breakdown:
            payment_breakdown[status] = {"orders": count, "revenue": to_money(revenue)}

    sales_data = _monthly_sales(
        org_lines.filter(models.Order.payment_status == PaymentStatus.PAID.value),
        models.Order.created_at,
        func.sum(line_revenue),
        func.count(func.distinct(models.Order.id)),
        "orders",
    )

    product_status = {
        status.value: {"count": 0, "totalQuantity": 0} for status in ItemStatus
    }
    status_rows = db.query(
        models.OrderItem.status,
        func.count(models.OrderItem.id),
        func.coalesce(func.sum(models.OrderItem.quantity), 0),
    ).filter(models.OrderItem.org_id == org.id).group_by(models.OrderItem.status).all()
    for status, count, quantity in status_rows:
        if status in product_status:
            product_status[status] = {"count": count, "totalQuantity": int(quantity)}

    return {
        "organization": {
            "name": org.name,
            "contact": {
                "phone": org.contact_phone,
                "email": org.contact_email,
                "website": org.website,
            },
        },
        "totalOrders": total_orders,
        "totalProducts": total_products,
        "lowStockProducts": low_stock_products,
        "totalRevenue": _sum_revenue(sales_data),
        "paymentStatus": payment_breakdown,
        "salesData": sales_data,
        "productStatus": product_status,
    }


def customer_stats(db: Session, email: str) -> Dict[str, Any]:
    """
    Order statistics for one customer.

    Returns:
        dict: totalOrders, totalSpent (Paid orders), totalProducts (units
        ordered) and orderStatus (line item status counts)

    Raises:
        NotFoundError: If the customer does not exist or is deleted
    """
    user = crud.get_user_by_email(db, email)
    if user is None or user.is_deleted:
        raise NotFoundError("User not found or deleted")

    orders = db.query(models.Order).filter(models.Order.user_id == user.id)
    total_orders = orders.with_entities(func.count(models.Order.id)).scalar() or 0
    total_spent = orders.filter(
        models.Order.payment_status == PaymentStatus.PAID.value
    ).with_entities(func.sum(models.Order.total_price)).scalar()

    user_lines = db.query(models.OrderItem).join(
        models.Order, models.OrderItem.order_id == models.Order.id
    ).filter(models.Order.user_id == user.id)
    total_products = user_lines.with_entities(func.sum(models.OrderItem.quantity)).scalar() or 0

    order_status = {status.value: 0 for status in ItemStatus}
    for status, count in user_lines.with_entities(
        models.OrderItem.status, func.count(models.OrderItem.id)
    ).group_by(models.OrderItem.status).all():
        if status in order_status:
            order_status[status] = count

    return {
        "totalOrders": total_orders,
        "totalSpent": to_money(total_spent),
        "totalProducts": int(total_products),
        "orderStatus": order_status,
    }
