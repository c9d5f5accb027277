"""Database package for the storefront service."""
from .connection import create_session_factory, get_db, get_session_factory, init_db
from .models import (
    AuditLog,
    Base,
    CardToken,
    Customer,
    EventStatus,
    EventType,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
)

__all__ = [
    "Base",
    "AuditLog",
    "CardToken",
    "Customer",
    "EventStatus",
    "EventType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Product",
    "create_session_factory",
    "get_db",
    "get_session_factory",
    "init_db",
]
