"""
Checkout orchestration with retrying payment authorization.

Flow:
1. Validate customer and active cart
2. Move the cart to PENDING with shipping details
3. Create the payment record in PROCESSING
4. Authorize against the gateway, retrying with a fixed delay
5. Persist the terminal state (APPROVED/CONFIRMED or FAILED_FINAL/CANCELLED)
6. Decrement stock, notify the customer, and build the response

The request session is committed at every state transition so the terminal
state is durable before a payment failure is raised. Audit events are
written after each commit through the recorder's own session, and an audit
call that raises is logged and ignored.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from core.audit import AuditRecorder
from core.cart import find_active_cart
from core.exceptions import CustomerNotFoundError, OrderNotFoundError, PaymentFailedError
from core.projections import checkout_to_dict
from database.models import (
    Customer,
    EventType,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
    utcnow,
)
from integrations.notifications import EmailNotifier
from integrations.payment_gateway import SimulatedPaymentGateway
from monitoring.metrics import metrics

if TYPE_CHECKING:
    from api.schemas import CheckoutRequest

logger = structlog.get_logger(__name__)

DelayFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class CheckoutConfig:
    """Payment retry policy."""

    approval_probability: float = 0.7
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.approval_probability <= 1.0:
            raise ValueError("approval_probability must be between 0 and 1")
        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CheckoutConfig":
        return cls(
            approval_probability=settings.payment_approval_probability,
            max_retry_attempts=settings.payment_max_retry_attempts,
            retry_delay_seconds=settings.payment_retry_delay_millis / 1000.0,
        )


class CheckoutService:
    """
    Checkout orchestrator.

    Converts a customer's cart into a pending order, runs the payment retry
    loop and persists the outcome.
    """

    def __init__(
        self,
        config: Optional[CheckoutConfig] = None,
        gateway: Optional[SimulatedPaymentGateway] = None,
        audit: Optional[AuditRecorder] = None,
        notifier: Optional[EmailNotifier] = None,
        delay: Optional[DelayFn] = None,
    ):
        """
        Initialize checkout service.

        Args:
            config: Retry policy, defaults to the application settings
            gateway: Authorization step, defaults to a simulated gateway
            audit: Audit recorder
            notifier: Customer email notifier
            delay: Awaitable used to wait between attempts
        """
        self.config = config or CheckoutConfig.from_settings(get_settings())
        self.gateway = gateway or SimulatedPaymentGateway(self.config.approval_probability)
        self.audit = audit or AuditRecorder()
        self.notifier = notifier or EmailNotifier()
        self.delay = delay or asyncio.sleep

    async def process_checkout(
        self,
        request: "CheckoutRequest",
        db: AsyncSession,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Check out the customer's active cart.

        Args:
            request: Customer id, tokenized card and shipping details
            db: Database session
            source_ip: Client address for the audit trail

        Returns:
            Dict with the checkout projection

        Raises:
            CustomerNotFoundError: If the customer does not exist
            OrderNotFoundError: If there is no active cart or it is empty
            PaymentFailedError: If every authorization attempt was declined
        """
        started = time.perf_counter()
        customer_id = request.customer_id
        logger.info("checkout_started", customer_id=customer_id)

        customer = await db.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer with ID {customer_id} not found")

        order = await find_active_cart(customer_id, db)
        if order is None:
            raise OrderNotFoundError(f"No active cart found for customer {customer_id}")
        if not order.items:
            raise OrderNotFoundError("Cart is empty. Cannot proceed with checkout.")

        # CART -> PENDING
        order.shipping_address = request.shipping_address
        order.shipping_city = request.shipping_city
        order.shipping_state = request.shipping_state
        order.shipping_zip_code = request.shipping_zip_code
        order.shipping_country = request.shipping_country
        order.status = OrderStatus.PENDING.value
        order.updated_at = utcnow()
        await db.commit()

        logger.info(
            "order_pending",
            order_id=order.id,
            customer_id=customer_id,
            total_amount=str(order.total_amount),
        )
        await self._audit(
            self.audit.log_success,
            EventType.ORDER_CREATED,
            "ORDER",
            str(order.id),
            str(customer.id),
            "Order created for checkout",
            details={"total_amount": order.total_amount, "items": len(order.items)},
            source_ip=source_ip,
        )

        now = utcnow()
        payment = Payment(
            order_id=order.id,
            tokenized_card=request.tokenized_card,
            amount=order.total_amount,
            status=PaymentStatus.PROCESSING.value,
            attempt_count=0,
            created_at=now,
            updated_at=now,
        )
        db.add(payment)
        await db.commit()

        logger.info("payment_initiated", payment_id=payment.id, order_id=order.id)
        await self._audit(
            self.audit.log_success,
            EventType.PAYMENT_INITIATED,
            "PAYMENT",
            str(payment.id),
            str(customer.id),
            "Payment processing initiated",
            details={"amount": payment.amount},
            source_ip=source_ip,
        )

        order_id, payment_id = order.id, payment.id
        try:
            await self._process_payment_with_retries(customer, order, payment, db, source_ip)
        except PaymentFailedError:
            metrics.record_checkout("failed", time.perf_counter() - started)
            raise

        # A failed stock decrement rolls back and expires every loaded instance
        order = await self._reload(Order, order_id, db)
        payment = await self._reload(Payment, payment_id, db)
        customer = order.customer

        metrics.record_checkout("approved", time.perf_counter() - started)
        logger.info(
            "checkout_completed",
            order_id=order.id,
            payment_id=payment.id,
            attempts=payment.attempt_count,
        )
        return checkout_to_dict(order, customer, payment)

    async def get_checkout_status(
        self, customer_id: int, order_id: int, db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Current checkout state of an order. Performs no writes.

        Raises:
            CustomerNotFoundError: If the customer does not exist
            OrderNotFoundError: If the order does not exist
            PaymentFailedError: If the order has no payment record
        """
        logger.info("checkout_status_requested", customer_id=customer_id, order_id=order_id)

        customer = await db.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer with ID {customer_id} not found")

        order = await db.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")

        result = await db.execute(select(Payment).where(Payment.order_id == order_id))
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentFailedError(f"Payment not found for order {order_id}")

        return checkout_to_dict(order, customer, payment)

    async def _process_payment_with_retries(
        self,
        customer: Customer,
        order: Order,
        payment: Payment,
        db: AsyncSession,
        source_ip: Optional[str],
    ) -> None:
        max_attempts = self.config.max_retry_attempts
        attempt = 0
        approved = False

        while attempt < max_attempts and not approved:
            attempt += 1
            payment.attempt_count = attempt

            logger.info(
                "payment_attempt",
                order_id=order.id,
                payment_id=payment.id,
                attempt=attempt,
                max_attempts=max_attempts,
            )

            approved = await self.gateway.authorize(payment.tokenized_card, payment.amount)
            metrics.record_payment_attempt(approved)

            if approved:
                await self._handle_approval(customer, order, payment, attempt, db, source_ip)
                break

            failure_reason = f"Payment declined by gateway (attempt {attempt}/{max_attempts})"
            payment.failure_reason = failure_reason
            logger.warning(
                "payment_attempt_declined",
                order_id=order.id,
                payment_id=payment.id,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            await self._audit(
                self.audit.log_retry,
                EventType.PAYMENT_ATTEMPTED,
                "PAYMENT",
                str(payment.id),
                str(customer.id),
                f"Payment attempt declined {attempt}/{max_attempts}",
                source_ip=source_ip,
            )

            if attempt < max_attempts:
                logger.debug("payment_retry_wait", delay_seconds=self.config.retry_delay_seconds)
                await self.delay(self.config.retry_delay_seconds)
            else:
                await self._handle_exhaustion(
                    customer, order, payment, failure_reason, db, source_ip
                )

    async def _handle_approval(
        self,
        customer: Customer,
        order: Order,
        payment: Payment,
        attempt: int,
        db: AsyncSession,
        source_ip: Optional[str],
    ) -> None:
        payment.status = PaymentStatus.APPROVED.value
        payment.updated_at = utcnow()
        await db.commit()

        logger.info("payment_approved", order_id=order.id, payment_id=payment.id, attempt=attempt)
        metrics.record_checkout_attempts(attempt)
        await self._audit(
            self.audit.log_success,
            EventType.PAYMENT_APPROVED,
            "PAYMENT",
            str(payment.id),
            str(customer.id),
            f"Payment approved on attempt {attempt}",
            source_ip=source_ip,
        )

        order.status = OrderStatus.CONFIRMED.value
        order.updated_at = utcnow()
        await db.commit()

        await self._audit(
            self.audit.log_success,
            EventType.ORDER_STATUS_CHANGED,
            "ORDER",
            str(order.id),
            str(customer.id),
            "Order confirmed after payment approval",
            details={"from": OrderStatus.PENDING, "to": OrderStatus.CONFIRMED},
            source_ip=source_ip,
        )

        notification = (customer.email, customer.full_name, order.id, payment.amount)
        await self._decrease_product_stock(order, db)

        await self.notifier.send_payment_approved(*notification)

    async def _handle_exhaustion(
        self,
        customer: Customer,
        order: Order,
        payment: Payment,
        failure_reason: str,
        db: AsyncSession,
        source_ip: Optional[str],
    ) -> None:
        max_attempts = self.config.max_retry_attempts
        logger.error(
            "payment_attempts_exhausted",
            order_id=order.id,
            payment_id=payment.id,
            attempts=max_attempts,
        )
        metrics.record_checkout_attempts(max_attempts)

        now = utcnow()
        payment.status = PaymentStatus.FAILED_FINAL.value
        payment.updated_at = now
        order.status = OrderStatus.CANCELLED.value
        order.updated_at = now
        await db.commit()

        await self._audit(
            self.audit.log_failure,
            EventType.PAYMENT_REJECTED,
            "PAYMENT",
            str(payment.id),
            str(customer.id),
            f"Payment rejected after {max_attempts} attempts",
            failure_reason,
            source_ip=source_ip,
        )
        await self._audit(
            self.audit.log_success,
            EventType.ORDER_CANCELLED,
            "ORDER",
            str(order.id),
            str(customer.id),
            "Order cancelled after payment failure",
            source_ip=source_ip,
        )

        await self.notifier.send_payment_failure(
            customer.email, customer.full_name, order.id, failure_reason
        )

        raise PaymentFailedError(
            f"Payment processing failed after {max_attempts} attempts. Please contact support."
        )

    async def _decrease_product_stock(self, order: Order, db: AsyncSession) -> None:
        """Best-effort stock decrement for an approved order; never raises."""
        try:
            for item in order.items:
                product = await db.get(Product, item.product_id, populate_existing=True)
                if product is None:
                    logger.error(
                        "stock_decrement_product_missing",
                        order_id=order.id,
                        product_id=item.product_id,
                    )
                    metrics.record_stock_anomaly("product_missing")
                    continue

                new_stock = product.stock - item.quantity
                if new_stock < 0:
                    logger.error(
                        "stock_decrement_negative",
                        order_id=order.id,
                        product_id=product.id,
                        stock=product.stock,
                        quantity=item.quantity,
                    )
                    metrics.record_stock_anomaly("negative_stock")
                    continue

                product.stock = new_stock
                product.updated_at = utcnow()
                logger.info("stock_decremented", product_id=product.id, stock=new_stock)

            await db.commit()
        except Exception as e:
            logger.error(
                "stock_decrement_failed",
                order_id=order.id,
                error=str(e),
                exc_info=True,
            )
            metrics.record_stock_anomaly("error")
            await db.rollback()

    async def _audit(
        self, log: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> None:
        """Run an audit call; audit problems never change the checkout outcome."""
        try:
            await log(*args, **kwargs)
        except Exception as e:
            logger.error("checkout_audit_failed", event_type=str(args[0]), error=str(e))

    @staticmethod
    async def _reload(model: Any, ident: int, db: AsyncSession) -> Any:
        result = await db.execute(
            select(model)
            .where(model.id == ident)
            .execution_options(populate_existing=True)
        )
        return result.unique().scalar_one()
