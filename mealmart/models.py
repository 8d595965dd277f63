"""
SQLAlchemy ORM models for the MealMart orders service.

Defines the database schema for orders, their line items and timeline, plus
the user, organization and meal records the order workflow reads from.
"""
import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class ShippingStatus(str, enum.Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PREPARING = "Preparing"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class ItemStatus(str, enum.Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class MealCategory(str, enum.Enum):
    SMOOTHIES = "Smoothies"
    BREAKFAST_BOWLS = "Breakfast Bowls"
    PASTA = "Pasta"
    HARVEST_BOWLS = "Harvest Bowls"
    GRAINS = "Grains"
    SOUPS = "Soups"
    SNACKS = "Snacks"


def _order_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """
    User account as seen by the orders service (registration lives elsewhere).

    Attributes:
        id (int): Primary key
        name (str): Full name, sent to the payment gateway
        email (str): Unique email, the identity carried in the JWT
        role (str): customer, provider or admin
        phone, city, address (str): Contact details used for payment initiation
        is_deleted (bool): Soft-delete flag
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default=UserRole.CUSTOMER.value)
    phone = Column(String, nullable=True)
    city = Column(String, nullable=True)
    address = Column(String, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)


class Organization(Base):
    """
    A provider's seller account. Only verified organizations can sell.
    """
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    contact_phone = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    website = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    meals = relationship("Meal", back_populates="organization")


class Meal(Base):
    """
    Catalog item that can be ordered.

    Attributes:
        price (Decimal): Current unit price; orders snapshot it at creation
        in_stock (bool): Availability flag checked by the inventory gate
        quantity (int): Tracked stock, decremented atomically on order
    """
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True, index=True)
    meal_name = Column(String, nullable=False, index=True)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    in_stock = Column(Boolean, nullable=False, default=True)
    quantity = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="meals")


class Order(Base):
    """
    Customer order with two independent status axes.

    Attributes:
        id (str): Order ID generated at creation (uuid hex)
        user_id (int): Placing customer, immutable
        total_price (Decimal): Fixed at creation from server-side prices
        payment_status (str): Pending, Paid, Failed or Cancelled
        shipping_status (str): Pending, Accepted, Preparing, Delivered or Cancelled
        transaction_id (str): Payment gateway correlation handle
        transaction (dict): Latest gateway transaction block
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, index=True, default=_order_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_price = Column(Numeric(10, 2), nullable=False)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    shipping_status = Column(String, nullable=False, default=ShippingStatus.PENDING.value)
    transaction_id = Column(String, nullable=True, index=True)
    transaction = Column(JSONType, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    """
    One line of an order. ``org_id`` and ``unit_price`` are snapshots taken at
    order time and intentionally do not follow later catalog changes.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(Integer, ForeignKey("meals.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    org_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    unit_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default=ItemStatus.PENDING.value)

    order = relationship("Order", back_populates="items")
    product = relationship("Meal")
    organization = relationship("Organization")


class OrderEvent(Base):
    """
    OrderEvent model representing historical events in an order's lifecycle.

    Attributes:
        id (int): Primary key, auto-incrementing event ID
        order_id (str): Foreign key to the order
        event_type (str): Type of event (e.g., "created", "payment_verified")
        description (str): Human-readable description of the event
        old_value (str): Previous value (for changes, optional)
        new_value (str): New value (for changes, optional)
        user_id (int): ID of the user who triggered the event (optional)
        created_at (datetime): Timestamp when the event occurred
    """
    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    user_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
