"""
Shopping cart management.

A customer's cart is their single order in status CART. Items are merged by
product, and the order total is recomputed from item subtotals on every
change.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.audit import AuditRecorder
from core.exceptions import (
    CustomerNotFoundError,
    InsufficientStockError,
    OrderNotFoundError,
    ProductNotFoundError,
)
from core.projections import order_to_dict
from database.models import Customer, EventType, Order, OrderItem, OrderStatus, Product, utcnow

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


async def find_active_cart(customer_id: int, db: AsyncSession) -> Optional[Order]:
    """Return the customer's order in status CART, if any."""
    result = await db.execute(
        select(Order).where(
            Order.customer_id == customer_id,
            Order.status == OrderStatus.CART.value,
        )
    )
    return result.unique().scalar_one_or_none()


class CartService:
    """Adds products to a customer's active cart."""

    def __init__(self, audit: Optional[AuditRecorder] = None) -> None:
        self.audit = audit or AuditRecorder()

    async def add_to_cart(
        self,
        customer_id: int,
        product_id: int,
        quantity: int,
        db: AsyncSession,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Add a product to the customer's active cart, creating the cart if needed.

        Args:
            customer_id: Cart owner
            product_id: Product to add
            quantity: Units to add, at least 1
            db: Database session
            source_ip: Client address for the audit trail

        Returns:
            Dict with the full cart projection

        Raises:
            CustomerNotFoundError: If the customer does not exist
            ProductNotFoundError: If the product does not exist or is inactive
            InsufficientStockError: If stock cannot cover the requested or cumulative quantity
        """
        logger.info(
            "cart_add_started",
            customer_id=customer_id,
            product_id=product_id,
            quantity=quantity,
        )

        try:
            cart, created = await self._apply_item(customer_id, product_id, quantity, db)
        except IntegrityError:
            # Another request created this customer's cart first; merge into it
            await db.rollback()
            logger.warning("cart_create_conflict", customer_id=customer_id)
            cart, created = await self._apply_item(customer_id, product_id, quantity, db)

        logger.info(
            "cart_updated",
            customer_id=customer_id,
            order_id=cart.id,
            total_amount=str(cart.total_amount),
            items=len(cart.items),
        )

        if created:
            await self.audit.log_success(
                EventType.CART_CREATED,
                "ORDER",
                str(cart.id),
                str(customer_id),
                "Shopping cart created",
                source_ip=source_ip,
            )
        await self.audit.log_success(
            EventType.ITEM_ADDED_TO_CART,
            "ORDER",
            str(cart.id),
            str(customer_id),
            f"Added {quantity} x product {product_id} to cart",
            details={"product_id": product_id, "quantity": quantity, "total": cart.total_amount},
            source_ip=source_ip,
        )

        return order_to_dict(cart)

    async def get_cart(self, customer_id: int, db: AsyncSession) -> Dict[str, Any]:
        """
        Fetch the customer's active cart.

        Raises:
            OrderNotFoundError: If the customer has no active cart
        """
        cart = await find_active_cart(customer_id, db)
        if cart is None:
            raise OrderNotFoundError(f"No active cart found for customer {customer_id}")
        return order_to_dict(cart)

    async def _apply_item(
        self, customer_id: int, product_id: int, quantity: int, db: AsyncSession
    ) -> tuple[Order, bool]:
        customer = await db.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer with ID {customer_id} not found")

        product = await db.get(Product, product_id)
        if product is None or not product.active:
            raise ProductNotFoundError(f"Product with ID {product_id} not found or is inactive")

        if product.stock < quantity:
            raise InsufficientStockError(
                f"Insufficient stock for product '{product.name}'. "
                f"Available: {product.stock}, Requested: {quantity}"
            )

        now = utcnow()
        cart = await find_active_cart(customer_id, db)
        created = cart is None
        if cart is None:
            cart = Order(
                customer=customer,
                status=OrderStatus.CART.value,
                total_amount=Decimal("0.00"),
                created_at=now,
                updated_at=now,
            )
            db.add(cart)
            logger.info("cart_created", customer_id=customer_id)

        item = next((i for i in cart.items if i.product_id == product.id), None)
        if item is not None:
            new_quantity = item.quantity + quantity
            if product.stock < new_quantity:
                raise InsufficientStockError(
                    f"Insufficient stock for product '{product.name}'. "
                    f"Available: {product.stock}, Requested total: {new_quantity}"
                )
            item.quantity = new_quantity
            item.subtotal = (item.unit_price * new_quantity).quantize(CENT)
        else:
            cart.items.append(
                OrderItem(
                    product=product,
                    quantity=quantity,
                    unit_price=product.price,
                    subtotal=(product.price * quantity).quantize(CENT),
                )
            )

        cart.recalculate_total()
        cart.updated_at = now
        await db.commit()
        return cart, created
