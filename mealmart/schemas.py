"""
Pydantic schemas for request/response validation in the MealMart orders service.

These schemas define the structure of data for API requests and responses.
Fields are exposed in camelCase; requests accept either spelling.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from .models import ItemStatus, PaymentStatus, ShippingStatus


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, ORM attribute loading."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class OrderItemCreate(CamelModel):
    """Schema for one requested order line."""
    product: int = Field(..., description="Meal ID")
    quantity: int = Field(..., description="Quantity ordered, must be positive")


class OrderCreate(CamelModel):
    """
    Schema for placing an order.

    Prices are never accepted from the client; the total is computed from
    the catalog at creation time.
    """
    products: List[OrderItemCreate] = Field(default_factory=list, description="Order lines")


class LineItemStatusUpdate(CamelModel):
    """Schema for updating a single line item's fulfillment status."""
    order_id: str
    product_id: int
    status: str


class ShippingStatusUpdate(CamelModel):
    """Schema for overwriting an order's shipping status."""
    order_id: str
    status: str


class Transaction(CamelModel):
    """Latest payment gateway correlation for an order."""
    id: Optional[str] = None
    transaction_status: Optional[str] = None
    bank_status: Optional[str] = None
    sp_code: Optional[str] = None
    sp_message: Optional[str] = None
    method: Optional[str] = None
    date_time: Optional[str] = None


class OrderItem(CamelModel):
    """Schema for an order line in responses."""
    product: int = Field(validation_alias="product_id")
    quantity: int
    org_id: int
    unit_price: Decimal
    status: ItemStatus


class Order(CamelModel):
    """
    Schema for order responses, includes all database fields.

    Attributes:
        id (str): Order's unique identifier
        user (int): ID of the user who placed the order
        products (List[OrderItem]): Order lines
        total_price (Decimal): Total fixed at creation
        payment_status (PaymentStatus): Payment axis
        shipping_status (ShippingStatus): Fulfillment axis
        transaction (Transaction): Latest gateway correlation (optional)
        created_at, updated_at (datetime): Timestamps
    """
    id: str
    user: int = Field(validation_alias="user_id")
    products: List[OrderItem] = Field(default_factory=list, validation_alias="items")
    total_price: Decimal
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    transaction: Optional[Transaction] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserSummary(CamelModel):
    """Customer display data attached to enriched order views."""
    id: int
    name: str
    email: EmailStr


class MealSummary(CamelModel):
    """Meal display data attached to enriched order lines."""
    id: int
    meal_name: str
    price: Decimal
    category: str


class OrganizationSummary(CamelModel):
    id: int
    name: str


class EnrichedOrderItem(CamelModel):
    """Order line with meal and organization details."""
    product: int
    quantity: int
    status: ItemStatus
    meal_details: Optional[MealSummary] = None
    organization_details: Optional[OrganizationSummary] = None


class EnrichedOrder(CamelModel):
    """
    Order joined with customer, meal and organization display data.

    In provider views ``products`` holds only the provider's own lines,
    ``total_price`` is omitted and ``provider_subtotal`` covers those lines.
    """
    id: str
    user_details: UserSummary
    products: List[EnrichedOrderItem]
    total_price: Optional[Decimal] = None
    provider_subtotal: Optional[Decimal] = None
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Meal(CamelModel):
    """Schema for meal responses."""
    id: int
    meal_name: str
    org_id: int
    description: str
    category: str
    price: Decimal
    in_stock: bool
    quantity: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CheckoutSession(CamelModel):
    """Result of placing an order: where to send the customer to pay."""
    order_id: str
    checkout_url: str


class OrderEvent(CamelModel):
    """
    Schema for order timeline events.

    Attributes:
        id (int): Event ID
        order_id (str): Order identifier
        event_type (str): Type of event
        description (str): Human-readable event description
        old_value (str): Previous value (optional)
        new_value (str): New value (optional)
        user_id (int): User who triggered the event (optional)
        created_at (datetime): When the event occurred
    """
    id: int
    order_id: str
    event_type: str
    description: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime
