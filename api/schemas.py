"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator

T = TypeVar("T")


def _not_blank(v: str) -> str:
    if not v.strip():
        raise ValueError("must not be blank")
    return v


# Customers


class CustomerRegistrationRequest(BaseModel):
    """Request schema for registering a customer."""

    first_name: str = Field(..., min_length=2, max_length=100, description="First name")
    last_name: str = Field(..., min_length=2, max_length=100, description="Last name")
    email: EmailStr = Field(..., description="Email address, unique case-insensitively")
    phone_number: str = Field(
        ..., pattern=r"^\+?[0-9]{10,20}$", description="Phone number, unique"
    )
    address: str = Field(..., min_length=5, max_length=255, description="Street address")
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    zip_code: Optional[str] = Field(default=None, pattern=r"^[0-9]{5,20}$")
    country: Optional[str] = Field(default=None, max_length=100)

    @field_validator("first_name", "last_name", "address")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        return _not_blank(v)

    @field_validator("email")
    @classmethod
    def validate_email_length(cls, v: str) -> str:
        """Emails are stored in a 150 character column."""
        if len(v) > 150:
            raise ValueError("Email must not exceed 150 characters")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "first_name": "John",
                    "last_name": "Doe",
                    "email": "john.doe@example.com",
                    "phone_number": "+573001234567",
                    "address": "Calle 123 #45-67",
                    "city": "Bogota",
                    "state": "Cundinamarca",
                    "zip_code": "110111",
                    "country": "Colombia",
                }
            ]
        }
    }


class CustomerResponse(BaseModel):
    """Response schema for a customer."""

    id: int
    first_name: str
    last_name: str
    email: str
    phone_number: str
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    active: bool
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")


# Products


class ProductRequest(BaseModel):
    """Request schema for creating or replacing a product."""

    name: str = Field(..., min_length=3, max_length=200, description="Product name")
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Decimal = Field(..., ge=Decimal("0.01"), max_digits=10, decimal_places=2)
    stock: int = Field(..., ge=0, description="Units available")
    category: Optional[str] = Field(default=None, max_length=100)
    sku: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject whitespace-only names."""
        return _not_blank(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Laptop Pro 15",
                    "description": "15 inch laptop",
                    "price": "1299.99",
                    "stock": 10,
                    "category": "Electronics",
                    "sku": "LAP-PRO-15",
                }
            ]
        }
    }


class ProductResponse(BaseModel):
    """Response schema for a product."""

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    category: Optional[str] = None
    sku: Optional[str] = None
    active: bool
    created_at: str
    updated_at: str


# Cart / orders


class AddToCartRequest(BaseModel):
    """Request schema for adding a product to the cart."""

    product_id: int = Field(..., gt=0, description="Product to add")
    quantity: int = Field(..., ge=1, description="Units to add")


class OrderItemResponse(BaseModel):
    """Response schema for an order line."""

    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderResponse(BaseModel):
    """Response schema for a cart or order."""

    id: int
    customer_id: int
    customer_name: str
    items: List[OrderItemResponse]
    total_amount: Decimal
    status: str
    created_at: str
    updated_at: str


# Checkout


class CheckoutRequest(BaseModel):
    """Request schema for checking out the active cart."""

    customer_id: int = Field(..., gt=0, description="Customer checking out")
    tokenized_card: str = Field(..., min_length=1, max_length=255, description="Card token")
    shipping_address: str = Field(..., min_length=1, max_length=255)
    shipping_city: str = Field(..., min_length=1, max_length=100)
    shipping_state: str = Field(..., min_length=1, max_length=100)
    shipping_zip_code: str = Field(..., min_length=1, max_length=20)
    shipping_country: str = Field(..., min_length=1, max_length=100)

    @field_validator(
        "tokenized_card",
        "shipping_address",
        "shipping_city",
        "shipping_state",
        "shipping_zip_code",
        "shipping_country",
    )
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        return _not_blank(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": 1,
                    "tokenized_card": "tok_9f86d081884c7d659a2feaa0c55ad015",
                    "shipping_address": "Calle 123 #45-67",
                    "shipping_city": "Bogota",
                    "shipping_state": "Cundinamarca",
                    "shipping_zip_code": "110111",
                    "shipping_country": "Colombia",
                }
            ]
        }
    }


class PaymentResponse(BaseModel):
    """Response schema for a payment."""

    id: int
    order_id: int
    amount: Decimal
    status: str
    attempt_count: int
    failure_reason: Optional[str] = None
    created_at: str
    updated_at: str


class CheckoutResponse(BaseModel):
    """Response schema for checkout and checkout status."""

    order_id: int
    customer_id: int
    customer_name: str
    items: List[OrderItemResponse]
    total_amount: Decimal
    order_status: str
    payment: PaymentResponse
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_zip_code: Optional[str] = None
    shipping_country: Optional[str] = None
    created_at: str
    updated_at: str


# Tokenization


class TokenizationRequest(BaseModel):
    """Request schema for tokenizing a card."""

    card_number: str = Field(..., pattern=r"^[0-9]{13,19}$", description="Card number")
    cvv: str = Field(..., pattern=r"^[0-9]{3,4}$", description="Card security code")
    expiration_date: str = Field(
        ..., pattern=r"^(0[1-9]|1[0-2])/([0-9]{2})$", description="Expiration date (MM/YY)"
    )
    cardholder_name: str = Field(..., min_length=3, max_length=100)

    @field_validator("cardholder_name")
    @classmethod
    def validate_cardholder_name(cls, v: str) -> str:
        return _not_blank(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "card_number": "4111111111111111",
                    "cvv": "123",
                    "expiration_date": "12/30",
                    "cardholder_name": "John Doe",
                }
            ]
        }
    }


class TokenizationResponse(BaseModel):
    """Response schema for a card token."""

    token: str
    last_four_digits: str
    card_brand: str
    expiration_date: str
    created_at: str
    active: bool


# Audit


class AuditLogResponse(BaseModel):
    """Response schema for an audit record."""

    id: str
    event_type: str
    entity_type: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: str
    source_ip: Optional[str] = None


class Page(BaseModel, Generic[T]):
    """One page of results."""

    items: List[T]
    total: int = Field(..., description="Total matching records")
    page: int = Field(..., description="Page index, 0-based")
    size: int = Field(..., description="Page size")
    pages: int = Field(..., description="Total pages")


# Errors / monitoring


class ErrorResponse(BaseModel):
    """Error body for every failed request."""

    timestamp: datetime
    status: int
    error: str
    message: str
    path: str
    details: Optional[Dict[str, str]] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
