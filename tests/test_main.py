"""Tests for service-level routes, the order timeline and timestamps."""
import warnings
from datetime import datetime, timedelta, timezone

from conftest import auth_headers
from mealmart import models


def test_health(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_timeline_lists_creation_events(client, market, place_order):
    order_id = place_order(market.customer, [(market.meal_a, 1)])

    response = client.get(f"/orders/{order_id}/timeline", headers=auth_headers(market.customer))

    assert response.status_code == 200
    events = response.json()["data"]
    assert [event["eventType"] for event in events] == ["created", "payment_initiated"]
    assert events[1]["newValue"] == "SP-0001"


def test_timeline_is_private_to_owner_and_admin(client, market, make_user, place_order):
    order_id = place_order(market.customer, [(market.meal_a, 1)])
    stranger = make_user(name="Stranger", email="stranger@example.com")

    assert client.get(f"/orders/{order_id}/timeline", headers=auth_headers(stranger)).status_code == 403
    assert client.get(f"/orders/{order_id}/timeline", headers=auth_headers(market.admin)).status_code == 200


def test_invalid_token_is_unauthorized(client):
    response = client.get("/orders/my-orders", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_timestamps_are_naive_utc():
    now = datetime.now(timezone.utc).replace(tzinfo=None)

    stamp = models.utcnow()

    assert stamp.tzinfo is None
    assert abs(stamp - now) < timedelta(seconds=5)


def test_inserts_stamp_without_deprecated_clock(db):
    with warnings.catch_warnings():
        warnings.filterwarnings("error", message=".*utcnow", category=DeprecationWarning)
        user = models.User(name="Clock", email="clock@example.com", role="customer")
        db.add(user)
        db.commit()

    assert user.created_at is not None
