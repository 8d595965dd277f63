"""Shared fixtures: in-memory database, API client, JWT tokens and seed data."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WEBHOOK_URLS"] = ""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from mealmart import auth, models
from mealmart.clients import payment_client
from mealmart.database import Base, SessionLocal, engine
from mealmart.main import app


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(tables):
    with TestClient(app) as test_client:
        yield test_client


def make_token(user: models.User) -> str:
    claims = {"sub": str(user.id), "email": user.email, "role": user.role}
    return jwt.encode(claims, auth.SECRET_KEY, algorithm=auth.ALGORITHM)


def auth_headers(user: models.User) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


@pytest.fixture
def make_user(db):
    def _make(name="Customer", email="customer@example.com", role="customer", **kwargs):
        user = models.User(name=name, email=email, role=role, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_org(db):
    def _make(owner, name="Green Kitchen", is_verified=True, **kwargs):
        org = models.Organization(name=name, owner_id=owner.id, is_verified=is_verified, **kwargs)
        db.add(org)
        db.commit()
        db.refresh(org)
        return org
    return _make


@pytest.fixture
def make_meal(db):
    def _make(org, meal_name="Lentil Soup", price="10.00", quantity=50, category="Soups", **kwargs):
        kwargs.setdefault("description", f"{meal_name} made fresh")
        meal = models.Meal(
            meal_name=meal_name,
            org_id=org.id,
            price=Decimal(price),
            quantity=quantity,
            category=category,
            **kwargs,
        )
        db.add(meal)
        db.commit()
        db.refresh(meal)
        return meal
    return _make


@pytest.fixture
def market(make_user, make_org, make_meal):
    """A customer, an admin and two verified providers with one meal each."""
    customer = make_user(
        name="Rahim Uddin",
        email="rahim@example.com",
        phone="01700000000",
        city="Dhaka",
        address="House 1, Road 2",
    )
    admin = make_user(name="Admin", email="admin@example.com", role="admin")
    provider_a = make_user(name="Provider A", email="provider.a@example.com", role="provider")
    provider_b = make_user(name="Provider B", email="provider.b@example.com", role="provider")
    org_a = make_org(provider_a, name="Green Kitchen", contact_email="green@example.com")
    org_b = make_org(provider_b, name="Bowl House")
    meal_a = make_meal(org_a, meal_name="Lentil Soup", price="10.00", quantity=50)
    meal_b = make_meal(org_b, meal_name="Quinoa Bowl", price="5.50", quantity=20, category="Grains")
    return SimpleNamespace(
        customer=customer,
        admin=admin,
        provider_a=provider_a,
        provider_b=provider_b,
        org_a=org_a,
        org_b=org_b,
        meal_a=meal_a,
        meal_b=meal_b,
    )


@pytest.fixture
def gateway():
    """Patch the payment gateway client; tests configure the mocks' results."""
    initiate = AsyncMock(return_value={
        "checkout_url": "https://sandbox.shurjopayment.com/spaycheckout/?token=abc",
        "sp_order_id": "SP-0001",
        "transactionStatus": "Initiated",
    })
    verify = AsyncMock(return_value=[])
    with patch.object(payment_client, "initiate_payment", initiate), \
            patch.object(payment_client, "verify_payment", verify):
        yield SimpleNamespace(initiate=initiate, verify=verify)


@pytest.fixture
def place_order(client, gateway):
    """Place an order through the API and return the new order's ID."""
    def _place(user, lines, sp_order_id="SP-0001"):
        gateway.initiate.return_value = {
            "checkout_url": f"https://sandbox.shurjopayment.com/spaycheckout/?token={sp_order_id}",
            "sp_order_id": sp_order_id,
            "transactionStatus": "Initiated",
        }
        response = client.post(
            "/orders",
            json={"products": [{"product": meal.id, "quantity": qty} for meal, qty in lines]},
            headers=auth_headers(user),
        )
        assert response.status_code == 201, response.json()
        return response.json()["data"]["orderId"]
    return _place
