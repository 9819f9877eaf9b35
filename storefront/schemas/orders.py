"""
Checkout and order Pydantic schemas for API request/response validation.

This module defines the checkout request built from a cart snapshot, the
advisory payment-result callback, and the order history and owned-product
responses. All amounts are whole currency units with an explicit currency.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.orders.enums import OrderStatus


class CustomerDetails(BaseModel):
    """Buyer contact details forwarded to the payment gateway."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
    )

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Customer full name",
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        description="Customer email address",
    )
    phone: Optional[str] = Field(
        None,
        max_length=20,
        description="Customer phone number",
    )

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        """Validate email format."""
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        digits = "".join(filter(str.isdigit, v))
        if len(digits) < 8:
            raise ValueError("Phone number must contain at least 8 digits")
        return ("+" if v.startswith("+") else "") + digits


class CartLine(BaseModel):
    """One product line of the cart snapshot taken at checkout."""

    model_config = ConfigDict(str_strip_whitespace=True)

    product_id: UUID = Field(..., description="Product identifier")
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Product name shown to the buyer",
    )
    price: int = Field(
        ...,
        ge=0,
        description="Unit price in whole currency units",
    )
    quantity: int = Field(
        ...,
        gt=0,
        le=1000,
        description="Quantity to purchase",
    )


class CheckoutRequest(BaseModel):
    """Request schema for starting a checkout."""

    items: list[CartLine] = Field(
        ...,
        min_length=1,
        description="Cart lines to purchase",
    )
    customer: Optional[CustomerDetails] = Field(
        None,
        description="Buyer details; defaults to the signed-in user's email",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "items": [
                        {
                            "product_id": "0b6f7c1e-2f4e-4e57-9a37-0a3f7f0f3a11",
                            "name": "Logo design package",
                            "price": 60000,
                            "quantity": 1,
                        }
                    ],
                    "customer": {
                        "name": "Budi Santoso",
                        "email": "budi@example.com",
                        "phone": "+6281234567890",
                    },
                }
            ]
        }
    )


class CheckoutResponse(BaseModel):
    """Response schema for a started checkout."""

    order_id: UUID
    token: str = Field(..., description="Token for the hosted payment widget")
    redirect_url: Optional[str] = Field(
        None, description="Hosted payment page URL"
    )
    total_amount: int
    currency: str


class PaymentResultKind(str, Enum):
    """Result reported by the hosted payment widget."""

    SUCCESS = "success"
    PENDING = "pending"
    ERROR = "error"
    CLOSED = "closed"


class PaymentResultRequest(BaseModel):
    """Widget callback result reported by the client."""

    result: PaymentResultKind


class PaymentResultResponse(BaseModel):
    """Navigation hint for the client; never reflects a status change."""

    order_id: UUID
    result: PaymentResultKind
    message: str
    redirect_to: Optional[str] = None
    clear_cart: bool = False


class OrderItemResponse(BaseModel):
    """Order item response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    product_name: str
    quantity: int
    price: int
    currency: str


class OrderResponse(BaseModel):
    """Order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: OrderStatus
    total_amount: int
    currency: str
    midtrans_transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    items: list[OrderItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    """Paginated order history."""

    items: list[OrderResponse]
    total: int
    skip: int
    limit: int


class OwnedProductResponse(BaseModel):
    """Product the user has been granted access to."""

    product_id: UUID
    product_name: Optional[str] = None
    order_id: UUID
    granted_at: datetime
