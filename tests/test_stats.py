"""Tests for admin, provider and customer statistics."""
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import auth_headers
from mealmart import models, stats
from mealmart.errors import NotFoundError


@pytest.fixture
def history(db, market, make_meal):
    """Orders across three months with mixed payment statuses."""
    make_meal(market.org_a, meal_name="Pumpkin Soup", quantity=3)

    def add(created_at, payment_status, lines, shipping_status="Pending"):
        items = [
            models.OrderItem(
                position=position,
                product_id=meal.id,
                quantity=qty,
                org_id=meal.org_id,
                unit_price=meal.price,
                status=status,
            )
            for position, (meal, qty, status) in enumerate(lines)
        ]
        total = sum(meal.price * qty for meal, qty, _ in lines) * Decimal("1.1")
        order = models.Order(
            user_id=market.customer.id,
            total_price=total.quantize(Decimal("0.01")),
            payment_status=payment_status,
            shipping_status=shipping_status,
            created_at=created_at,
            items=items,
        )
        db.add(order)

    # Jan: paid, A x2 + B x1 -> 28.05
    add(datetime(2026, 1, 15), "Paid", [(market.meal_a, 2, "Delivered"), (market.meal_b, 1, "Delivered")])
    # Feb: failed, A x1 -> 11.00
    add(datetime(2026, 2, 3), "Failed", [(market.meal_a, 1, "Cancelled")])
    # Mar: paid, B x2 -> 12.10
    add(datetime(2026, 3, 20), "Paid", [(market.meal_b, 2, "Preparing")], shipping_status="Preparing")
    # Mar: pending, A x3 -> 33.00
    add(datetime(2026, 3, 28), "Pending", [(market.meal_a, 3, "Pending")])
    db.commit()
    return market


class TestAdminStats:
    def test_revenue_counts_paid_orders_only(self, db, history):
        result = stats.admin_stats(db)

        assert result["totalOrders"] == 4
        assert result["totalRevenue"] == Decimal("40.15")
        assert sum(entry["revenue"] for entry in result["salesData"]) == result["totalRevenue"]
        assert [(entry["year"], entry["month"], entry["ordersCount"]) for entry in result["salesData"]] == [
            (2026, "Jan", 1),
            (2026, "Mar", 1),
        ]

    def test_breakdowns_use_closed_vocabularies(self, db, history):
        result = stats.admin_stats(db)

        assert set(result["paymentStatus"]) == {"Pending", "Paid", "Failed", "Cancelled"}
        assert result["paymentStatus"]["Cancelled"] == {"count": 0, "revenue": Decimal("0.00")}
        assert result["paymentStatus"]["Paid"] == {"count": 2, "revenue": Decimal("40.15")}
        assert set(result["shippingStatus"]) == {"Pending", "Accepted", "Preparing", "Delivered", "Cancelled"}
        assert result["shippingStatus"]["Preparing"] == 1
        assert result["shippingStatus"]["Accepted"] == 0

    def test_product_counts(self, db, history):
        result = stats.admin_stats(db)

        assert result["totalProducts"] == 3
        assert result["lowStockProducts"] == 1

    def test_empty_store(self, db):
        result = stats.admin_stats(db)

        assert result["totalOrders"] == 0
        assert result["totalRevenue"] == Decimal("0.00")
        assert result["salesData"] == []
        assert all(entry == {"count": 0, "revenue": Decimal("0.00")} for entry in result["paymentStatus"].values())


class TestProviderStats:
    def test_revenue_is_own_paid_lines_without_fee(self, db, history):
        result = stats.provider_stats(db, history.provider_a.id)

        assert result["organization"]["name"] == "Green Kitchen"
        assert result["organization"]["contact"]["email"] == "green@example.com"
        assert result["totalOrders"] == 3
        assert result["totalProducts"] == 2
        assert result["lowStockProducts"] == 1
        assert result["totalRevenue"] == Decimal("20.00")
        assert result["salesData"] == [{"year": 2026, "month": "Jan", "revenue": Decimal("20.00"), "orders": 1}]
        assert result["paymentStatus"]["Failed"] == {"orders": 1, "revenue": Decimal("10.00")}
        assert result["paymentStatus"]["Cancelled"] == {"orders": 0, "revenue": Decimal("0.00")}

    def test_product_status_counts_own_lines(self, db, history):
        result = stats.provider_stats(db, history.provider_b.id)

        assert set(result["productStatus"]) == {"Pending", "Preparing", "Delivered", "Cancelled"}
        assert result["productStatus"]["Delivered"] == {"count": 1, "totalQuantity": 1}
        assert result["productStatus"]["Preparing"] == {"count": 1, "totalQuantity": 2}
        assert result["productStatus"]["Pending"] == {"count": 0, "totalQuantity": 0}
        assert result["totalRevenue"] == Decimal("16.50")

    def test_provider_without_organization(self, db, make_user):
        drifter = make_user(name="No Org", email="no.org@example.com", role="provider")

        with pytest.raises(NotFoundError):
            stats.provider_stats(db, drifter.id)


class TestCustomerStats:
    def test_totals(self, db, history):
        result = stats.customer_stats(db, "rahim@example.com")

        assert result == {
            "totalOrders": 4,
            "totalSpent": Decimal("40.15"),
            "totalProducts": 9,
            "orderStatus": {"Pending": 1, "Preparing": 1, "Delivered": 2, "Cancelled": 1},
        }

    def test_unknown_customer(self, db):
        with pytest.raises(NotFoundError):
            stats.customer_stats(db, "ghost@example.com")


class TestStatsEndpoints:
    def test_admin_endpoint_serializes_money(self, client, history):
        response = client.get("/orders/stats/admin", headers=auth_headers(history.admin))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalRevenue"] == 40.15
        assert data["salesData"][0]["month"] == "Jan"

    def test_role_guards(self, client, history):
        assert client.get("/orders/stats/admin", headers=auth_headers(history.customer)).status_code == 403
        assert client.get("/orders/stats/provider", headers=auth_headers(history.provider_a)).status_code == 200
        assert client.get("/orders/stats/customer", headers=auth_headers(history.customer)).status_code == 200
        assert client.get("/orders/stats/customer", headers=auth_headers(history.admin)).status_code == 403
