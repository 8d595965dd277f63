"""Tests for placing orders: pricing, stock, organization checks and payment initiation."""
from decimal import Decimal

from conftest import auth_headers
from mealmart import crud, models
from mealmart.errors import UpstreamFailureError


def _post_order(client, user, lines):
    return client.post(
        "/orders",
        json={"products": [{"product": product, "quantity": qty} for product, qty in lines]},
        headers=auth_headers(user),
    )


def _order_count(db):
    return db.query(models.Order).count()


class TestCreateOrder:
    def test_total_includes_service_fee(self, client, db, market, gateway):
        response = _post_order(client, market.customer, [(market.meal_a.id, 2), (market.meal_b.id, 1)])

        assert response.status_code == 201
        body = response.json()
        assert body["status"] is True
        assert body["data"]["checkoutUrl"].startswith("https://sandbox.shurjopayment.com/")

        order = crud.get_order(db, body["data"]["orderId"])
        # (10.00 * 2 + 5.50 * 1) * 1.10
        assert order.total_price == Decimal("28.05")
        assert order.payment_status == "Pending"
        assert order.shipping_status == "Pending"
        assert order.transaction_id == "SP-0001"
        assert order.transaction == {"id": "SP-0001", "transactionStatus": "Initiated"}

    def test_lines_snapshot_price_and_organization(self, client, db, market, gateway):
        order_id = _post_order(client, market.customer, [(market.meal_a.id, 2), (market.meal_b.id, 1)]).json()["data"]["orderId"]

        items = crud.get_order(db, order_id).items
        assert [(item.product_id, item.org_id, item.unit_price, item.status) for item in items] == [
            (market.meal_a.id, market.org_a.id, Decimal("10.00"), "Pending"),
            (market.meal_b.id, market.org_b.id, Decimal("5.50"), "Pending"),
        ]

    def test_gateway_receives_customer_details(self, client, market, gateway):
        _post_order(client, market.customer, [(market.meal_a.id, 1)])

        kwargs = gateway.initiate.await_args.kwargs
        assert kwargs["amount"] == Decimal("11.00")
        assert kwargs["customer_name"] == "Rahim Uddin"
        assert kwargs["customer_email"] == "rahim@example.com"
        assert kwargs["customer_phone"] == "01700000000"
        assert kwargs["customer_city"] == "Dhaka"
        assert kwargs["client_ip"]

    def test_stock_is_reserved(self, client, db, market, gateway):
        _post_order(client, market.customer, [(market.meal_b.id, 20)])

        db.expire_all()
        meal = db.get(models.Meal, market.meal_b.id)
        assert meal.quantity == 0
        assert meal.in_stock is False

    def test_out_of_stock_persists_nothing(self, client, db, market, gateway):
        response = _post_order(client, market.customer, [(market.meal_a.id, 1), (market.meal_b.id, 21)])

        assert response.status_code == 409
        assert response.json()["message"] == "Meal 'Quinoa Bowl' is out of stock!"
        assert _order_count(db) == 0
        db.expire_all()
        assert db.get(models.Meal, market.meal_a.id).quantity == 50
        gateway.initiate.assert_not_awaited()

    def test_flagged_out_of_stock_meal_is_rejected(self, client, db, market, make_meal, gateway):
        sold_out = make_meal(market.org_a, meal_name="Mushroom Soup", in_stock=False)

        response = _post_order(client, market.customer, [(sold_out.id, 1)])

        assert response.status_code == 409
        assert _order_count(db) == 0

    def test_unknown_meal_persists_nothing(self, client, db, market, gateway):
        response = _post_order(client, market.customer, [(market.meal_a.id, 1), (9999, 1)])

        assert response.status_code == 404
        assert response.json()["message"] == "Meal 9999 does not exist!"
        assert _order_count(db) == 0

    def test_unverified_organization_is_forbidden(self, client, db, market, make_user, make_org, make_meal, gateway):
        owner = make_user(name="New Provider", email="new@example.com", role="provider")
        org = make_org(owner, name="Unverified Cafe", is_verified=False)
        meal = make_meal(org, meal_name="Mystery Pasta", category="Pasta")

        response = _post_order(client, market.customer, [(meal.id, 1)])

        assert response.status_code == 403
        assert _order_count(db) == 0

    def test_empty_order_is_rejected(self, client, market, gateway):
        response = _post_order(client, market.customer, [])

        assert response.status_code == 400
        assert response.json()["message"] == "Order is not specified"

    def test_non_positive_quantity_is_rejected(self, client, db, market, gateway):
        response = _post_order(client, market.customer, [(market.meal_a.id, 0)])

        assert response.status_code == 400
        assert _order_count(db) == 0

    def test_duplicate_meal_is_rejected(self, client, market, gateway):
        response = _post_order(client, market.customer, [(market.meal_a.id, 1), (market.meal_a.id, 2)])
        assert response.status_code == 400

    def test_deleted_customer_is_not_found(self, client, db, market, gateway):
        market.customer.is_deleted = True
        db.commit()

        response = _post_order(client, market.customer, [(market.meal_a.id, 1)])

        assert response.status_code == 404
        assert response.json()["message"] == "User not found or deleted"

    def test_only_customers_can_order(self, client, market, gateway):
        response = _post_order(client, market.provider_a, [(market.meal_a.id, 1)])
        assert response.status_code == 403

    def test_missing_token_is_unauthorized(self, client, market, gateway):
        response = client.post("/orders", json={"products": [{"product": market.meal_a.id, "quantity": 1}]})

        assert response.status_code == 401
        assert response.json() == {
            "status": False,
            "statusCode": 401,
            "message": "You are not authorized!",
            "data": None,
        }


class TestGatewayFailure:
    def test_order_stays_pending_without_handle(self, client, db, market, gateway):
        gateway.initiate.side_effect = UpstreamFailureError("Payment gateway error: connection refused")

        response = _post_order(client, market.customer, [(market.meal_a.id, 3)])

        assert response.status_code == 502
        assert response.json()["status"] is False

        order = db.query(models.Order).one()
        assert order.payment_status == "Pending"
        assert order.transaction_id is None
        assert order.total_price == Decimal("33.00")

        events = [event.event_type for event in crud.get_order_events(db, order.id)]
        assert events == ["created", "payment_initiation_failed"]

    def test_stock_stays_reserved_for_reconciliation(self, client, db, market, gateway):
        gateway.initiate.side_effect = UpstreamFailureError("Payment gateway error: timeout")

        _post_order(client, market.customer, [(market.meal_a.id, 3)])

        db.expire_all()
        assert db.get(models.Meal, market.meal_a.id).quantity == 47


class TestReserveMealStock:
    def test_last_units_clear_stock_flag(self, db, market):
        assert crud.reserve_meal_stock(db, market.meal_b.id, 20) is True
        db.commit()
        db.expire_all()

        meal = db.get(models.Meal, market.meal_b.id)
        assert (meal.quantity, meal.in_stock) == (0, False)

    def test_insufficient_stock_changes_nothing(self, db, market):
        assert crud.reserve_meal_stock(db, market.meal_b.id, 21) is False
        db.commit()
        db.expire_all()

        assert db.get(models.Meal, market.meal_b.id).quantity == 20
