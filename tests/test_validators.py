"""Tests for business validators, money rounding and the error envelope."""
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mealmart import errors, inventory, validators
from mealmart.schemas import OrderItemCreate


def _items(*pairs):
    return [OrderItemCreate(product=product, quantity=quantity) for product, quantity in pairs]


class TestValidateOrderItems:
    def test_accepts_well_formed_lines(self):
        assert validators.validate_order_items(_items((1, 2), (2, 1))) == (True, "")

    @pytest.mark.parametrize("items, message", [
        ([], "Order is not specified"),
        (_items((1, 0)), "Meal 1: quantity must be positive"),
        (_items((1, -4)), "Meal 1: quantity must be positive"),
        (_items((1, 10001)), "Meal 1: quantity exceeds maximum (10000)"),
        (_items((1, 1), (1, 2)), "Order contains the same meal more than once"),
    ])
    def test_rejects(self, items, message):
        assert validators.validate_order_items(items) == (False, message)

    def test_rejects_too_many_lines(self):
        is_valid, message = validators.validate_order_items(_items(*((i, 1) for i in range(101))))
        assert not is_valid
        assert "more than 100" in message


class TestStatusVocabularies:
    def test_shipping_statuses(self):
        assert validators.validate_shipping_status("Accepted") == (True, "")
        assert validators.validate_shipping_status("accepted")[0] is False

    def test_item_statuses(self):
        assert validators.validate_item_status("Delivered") == (True, "")
        # Accepted is a shipping status only
        assert validators.validate_item_status("Accepted")[0] is False


class TestMoney:
    @pytest.mark.parametrize("value, expected", [
        (Decimal("28.045"), Decimal("28.05")),
        (Decimal("0.005"), Decimal("0.01")),
        (None, Decimal("0.00")),
        (12.1, Decimal("12.10")),
    ])
    def test_rounds_half_up_to_cents(self, value, expected):
        assert inventory.to_money(value) == expected


@pytest.fixture
def error_client():
    app = FastAPI()
    errors.register_exception_handlers(app)

    @app.get("/raise/{kind}")
    def raise_error(kind: str):
        raise {
            "not-found": errors.NotFoundError("Order not found!"),
            "conflict": errors.ConflictError("Already exists"),
            "out-of-stock": errors.OutOfStockError("Meal 'Soup' is out of stock!"),
            "forbidden": errors.ForbiddenError("Not allowed"),
            "validation": errors.ValidationError("Bad input"),
            "upstream": errors.UpstreamFailureError("Payment gateway error"),
        }[kind]

    @app.post("/body")
    def body(payload: OrderItemCreate):
        return errors.send_response(201, "Created", payload.dump(), {"page": 1})

    return TestClient(app)


class TestErrorEnvelope:
    @pytest.mark.parametrize("kind, status_code", [
        ("not-found", 404),
        ("conflict", 409),
        ("out-of-stock", 409),
        ("forbidden", 403),
        ("validation", 400),
        ("upstream", 502),
    ])
    def test_taxonomy_maps_to_status(self, error_client, kind, status_code):
        response = error_client.get(f"/raise/{kind}")

        assert response.status_code == status_code
        body = response.json()
        assert body["status"] is False
        assert body["statusCode"] == status_code
        assert body["data"] is None
        assert body["message"]

    def test_request_validation_is_bad_request(self, error_client):
        response = error_client.post("/body", json={"product": "soup", "quantity": 1})

        assert response.status_code == 400
        assert response.json()["message"].startswith("product:")

    def test_unknown_route_uses_envelope(self, error_client):
        response = error_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json()["status"] is False

    def test_success_envelope(self, error_client):
        response = error_client.post("/body", json={"product": 3, "quantity": 2})

        assert response.status_code == 201
        assert response.json() == {
            "status": True,
            "statusCode": 201,
            "message": "Created",
            "data": {"product": 3, "quantity": 2},
            "meta": {"page": 1},
        }
