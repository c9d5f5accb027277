"""Core storefront business logic."""
from .audit import AuditRecorder
from .cart import CartService
from .catalog import ProductService
from .checkout import CheckoutConfig, CheckoutService
from .customers import CustomerService
from .tokenization import TokenizationService

__all__ = [
    "AuditRecorder",
    "CartService",
    "CheckoutConfig",
    "CheckoutService",
    "CustomerService",
    "ProductService",
    "TokenizationService",
]
