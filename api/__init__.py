"""FastAPI application and routes."""
from .main import app
from .schemas import (
    AddToCartRequest,
    CheckoutRequest,
    CheckoutResponse,
    CustomerRegistrationRequest,
    OrderResponse,
    ProductRequest,
    TokenizationRequest,
    TokenizationResponse,
)

__all__ = [
    "app",
    "AddToCartRequest",
    "CheckoutRequest",
    "CheckoutResponse",
    "CustomerRegistrationRequest",
    "OrderResponse",
    "ProductRequest",
    "TokenizationRequest",
    "TokenizationResponse",
]
