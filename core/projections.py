"""Response projections shared by the services."""
from datetime import datetime
from typing import Any, Dict, Optional

from database.models import AuditLog, CardToken, Customer, Order, OrderItem, Payment, Product


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def customer_to_dict(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone_number": customer.phone_number,
        "address": customer.address,
        "city": customer.city,
        "state": customer.state,
        "zip_code": customer.zip_code,
        "country": customer.country,
        "active": customer.active,
        "created_at": _iso(customer.created_at),
        "updated_at": _iso(customer.updated_at),
    }


def product_to_dict(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "stock": product.stock,
        "category": product.category,
        "sku": product.sku,
        "active": product.active,
        "created_at": _iso(product.created_at),
        "updated_at": _iso(product.updated_at),
    }


def order_item_to_dict(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "product_id": item.product_id,
        "product_name": item.product.name,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "subtotal": item.subtotal,
    }


def order_to_dict(order: Order) -> Dict[str, Any]:
    """Cart/order projection."""
    return {
        "id": order.id,
        "customer_id": order.customer_id,
        "customer_name": order.customer.full_name,
        "items": [order_item_to_dict(item) for item in order.items],
        "total_amount": order.total_amount,
        "status": order.status,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "amount": payment.amount,
        "status": payment.status,
        "attempt_count": payment.attempt_count,
        "failure_reason": payment.failure_reason,
        "created_at": _iso(payment.created_at),
        "updated_at": _iso(payment.updated_at),
    }


def checkout_to_dict(order: Order, customer: Customer, payment: Payment) -> Dict[str, Any]:
    """Checkout projection assembled from current order, customer and payment state."""
    return {
        "order_id": order.id,
        "customer_id": customer.id,
        "customer_name": customer.full_name,
        "items": [order_item_to_dict(item) for item in order.items],
        "total_amount": order.total_amount,
        "order_status": order.status,
        "payment": payment_to_dict(payment),
        "shipping_address": order.shipping_address,
        "shipping_city": order.shipping_city,
        "shipping_state": order.shipping_state,
        "shipping_zip_code": order.shipping_zip_code,
        "shipping_country": order.shipping_country,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def card_token_to_dict(card_token: CardToken) -> Dict[str, Any]:
    return {
        "token": card_token.token,
        "last_four_digits": card_token.last_four_digits,
        "card_brand": card_token.card_brand,
        "expiration_date": card_token.expiration_date,
        "created_at": _iso(card_token.created_at),
        "active": card_token.active,
    }


def audit_log_to_dict(audit_log: AuditLog) -> Dict[str, Any]:
    return {
        "id": str(audit_log.id),
        "event_type": audit_log.event_type,
        "entity_type": audit_log.entity_type,
        "entity_id": audit_log.entity_id,
        "user_id": audit_log.user_id,
        "description": audit_log.description,
        "details": audit_log.details,
        "status": audit_log.status,
        "error_message": audit_log.error_message,
        "created_at": _iso(audit_log.created_at),
        "source_ip": audit_log.source_ip,
    }
