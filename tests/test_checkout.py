"""
Tests for checkout orchestration and the payment retry loop.
"""
from decimal import Decimal
from typing import Any, List
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import CheckoutRequest
from core.audit import AuditRecorder
from core.cart import CartService
from core.checkout import CheckoutConfig, CheckoutService
from core.exceptions import CustomerNotFoundError, OrderNotFoundError, PaymentFailedError
from database.models import AuditLog, Customer, Order, Payment, Product, utcnow
from integrations.notifications import EmailNotifier
from integrations.payment_gateway import SimulatedPaymentGateway


def build_service(
    audit: AuditRecorder,
    approval_probability: float = 1.0,
    max_retry_attempts: int = 3,
    gateway: Any = None,
) -> tuple[CheckoutService, AsyncMock, AsyncMock]:
    """Checkout service with a recorded delay and a mocked notifier."""
    config = CheckoutConfig(
        approval_probability=approval_probability,
        max_retry_attempts=max_retry_attempts,
        retry_delay_seconds=1.0,
    )
    delay = AsyncMock()
    notifier = AsyncMock(spec=EmailNotifier)
    service = CheckoutService(
        config=config,
        gateway=gateway or SimulatedPaymentGateway(approval_probability),
        audit=audit,
        notifier=notifier,
        delay=delay,
    )
    return service, delay, notifier


async def fill_cart(
    test_db: AsyncSession, audit: AuditRecorder, customer: Customer, products: List[Product]
) -> None:
    cart = CartService(audit=audit)
    await cart.add_to_cart(customer.id, products[0].id, 2, test_db)
    await cart.add_to_cart(customer.id, products[1].id, 1, test_db)


class TestCheckoutConfig:
    """Test suite for CheckoutConfig."""

    @pytest.mark.unit
    def test_from_settings(self, test_settings: Any) -> None:
        """Test delay is converted from milliseconds."""
        test_settings.payment_retry_delay_millis = 1500
        config = CheckoutConfig.from_settings(test_settings)

        assert config.retry_delay_seconds == 1.5
        assert config.max_retry_attempts == 3

    @pytest.mark.unit
    def test_rejects_invalid_probability(self) -> None:
        """Test probability outside [0, 1]."""
        with pytest.raises(ValueError, match="approval_probability"):
            CheckoutConfig(approval_probability=1.5)

    @pytest.mark.unit
    def test_rejects_zero_attempts(self) -> None:
        """Test at least one attempt is required."""
        with pytest.raises(ValueError, match="max_retry_attempts"):
            CheckoutConfig(max_retry_attempts=0)


class TestCheckoutService:
    """Test suite for CheckoutService."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_approved_first_attempt(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test approval confirms the order, decrements stock and notifies once."""
        await fill_cart(test_db, audit, customer, products)
        service, delay, notifier = build_service(audit, approval_probability=1.0)

        result = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )

        assert result["order_status"] == "CONFIRMED"
        assert result["payment"]["status"] == "APPROVED"
        assert result["payment"]["attempt_count"] == 1
        assert result["payment"]["failure_reason"] is None
        assert result["payment"]["amount"] == Decimal("2625.48")
        assert result["total_amount"] == Decimal("2625.48")
        assert result["shipping_city"] == "Bogota"
        assert len(result["items"]) == 2
        delay.assert_not_awaited()
        notifier.send_payment_approved.assert_awaited_once()
        notifier.send_payment_failure.assert_not_awaited()

        laptop = await test_db.get(Product, products[0].id, populate_existing=True)
        mouse = await test_db.get(Product, products[1].id, populate_existing=True)
        assert laptop is not None and laptop.stock == 8
        assert mouse is not None and mouse.stock == 4

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_approved_after_retry(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test a decline then approval keeps the earlier failure reason."""
        await fill_cart(test_db, audit, customer, products)
        gateway = AsyncMock(spec=SimulatedPaymentGateway)
        gateway.authorize.side_effect = [False, True]
        service, delay, notifier = build_service(audit, gateway=gateway)

        result = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )

        assert result["payment"]["status"] == "APPROVED"
        assert result["payment"]["attempt_count"] == 2
        assert result["payment"]["failure_reason"] == "Payment declined by gateway (attempt 1/3)"
        delay.assert_awaited_once_with(1.0)
        notifier.send_payment_approved.assert_awaited_once()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_exhausts_retries(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test every decline ends FAILED_FINAL/CANCELLED and raises after persisting."""
        await fill_cart(test_db, audit, customer, products)
        service, delay, notifier = build_service(audit, approval_probability=0.0)

        with pytest.raises(PaymentFailedError, match="failed after 3 attempts"):
            await service.process_checkout(
                CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
            )

        assert delay.await_count == 2
        notifier.send_payment_failure.assert_awaited_once()
        notifier.send_payment_approved.assert_not_awaited()

        payment = (
            await test_db.execute(
                select(Payment).execution_options(populate_existing=True)
            )
        ).scalar_one()
        order = await test_db.get(Order, payment.order_id, populate_existing=True)
        assert payment.status == "FAILED_FINAL"
        assert payment.attempt_count == 3
        assert payment.failure_reason == "Payment declined by gateway (attempt 3/3)"
        assert order is not None and order.status == "CANCELLED"

        laptop = await test_db.get(Product, products[0].id, populate_existing=True)
        assert laptop is not None and laptop.stock == 10

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_audit_trail(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test the failure path records retries, rejection and cancellation."""
        await fill_cart(test_db, audit, customer, products)
        service, _, _ = build_service(audit, approval_probability=0.0, max_retry_attempts=2)

        with pytest.raises(PaymentFailedError):
            await service.process_checkout(
                CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
            )

        result = await test_db.execute(select(AuditLog.event_type, AuditLog.status))
        events = [(row[0], row[1]) for row in result.all()]
        assert ("ORDER_CREATED", "SUCCESS") in events
        assert ("PAYMENT_INITIATED", "SUCCESS") in events
        assert events.count(("PAYMENT_ATTEMPTED", "RETRY")) == 2
        assert ("PAYMENT_REJECTED", "FAILURE") in events
        assert ("ORDER_CANCELLED", "SUCCESS") in events

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_without_cart(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test checkout without an active cart."""
        service, _, _ = build_service(audit)

        with pytest.raises(OrderNotFoundError, match="No active cart found"):
            await service.process_checkout(
                CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_empty_cart(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test an empty cart fails before any payment is created."""
        now = utcnow()
        test_db.add(
            Order(
                customer=customer,
                items=[],
                status="CART",
                total_amount=Decimal("0.00"),
                created_at=now,
                updated_at=now,
            )
        )
        await test_db.commit()
        service, _, _ = build_service(audit)

        with pytest.raises(OrderNotFoundError, match="Cart is empty"):
            await service.process_checkout(
                CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
            )

        payments = await test_db.execute(select(func.count()).select_from(Payment))
        assert payments.scalar_one() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_unknown_customer(
        self, test_db: AsyncSession, audit: AuditRecorder, checkout_payload: dict[str, Any]
    ) -> None:
        """Test unknown customer id."""
        service, _, _ = build_service(audit)

        with pytest.raises(CustomerNotFoundError):
            await service.process_checkout(
                CheckoutRequest(customer_id=404, **checkout_payload), test_db
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_audit_failure_does_not_affect_checkout(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test a broken audit store leaves checkout results unchanged."""
        await fill_cart(test_db, audit, customer, products)

        def broken_factory() -> Any:
            raise RuntimeError("audit store unavailable")

        broken_audit = AuditRecorder(session_factory=broken_factory)  # type: ignore[arg-type]
        service, _, _ = build_service(broken_audit, approval_probability=1.0)

        result = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )

        assert result["order_status"] == "CONFIRMED"
        assert result["payment"]["status"] == "APPROVED"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stock_anomaly_leaves_stock(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test a product that no longer has enough stock is skipped, not driven negative."""
        await fill_cart(test_db, audit, customer, products)
        laptop = await test_db.get(Product, products[0].id)
        assert laptop is not None
        laptop.stock = 1
        await test_db.commit()
        service, _, _ = build_service(audit, approval_probability=1.0)

        result = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )

        assert result["order_status"] == "CONFIRMED"
        laptop = await test_db.get(Product, products[0].id, populate_existing=True)
        mouse = await test_db.get(Product, products[1].id, populate_existing=True)
        assert laptop is not None and laptop.stock == 1
        assert mouse is not None and mouse.stock == 4

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stock_decrement_error_does_not_abort_checkout(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
        mocker: Any,
    ) -> None:
        """Test a database error mid-decrement rolls back stock but still confirms and notifies."""
        await fill_cart(test_db, audit, customer, products)
        service, _, notifier = build_service(audit, approval_probability=1.0)
        original_get = test_db.get

        async def get_then_fail(model: Any, ident: Any, **kwargs: Any) -> Any:
            found = await original_get(model, ident, **kwargs)
            if model is Product:
                raise RuntimeError("connection reset during stock update")
            return found

        mocker.patch.object(test_db, "get", side_effect=get_then_fail)

        result = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )

        assert result["order_status"] == "CONFIRMED"
        assert result["payment"]["status"] == "APPROVED"
        assert result["customer_name"] == "John Doe"
        notifier.send_payment_approved.assert_awaited_once_with(
            "john.doe@example.com", "John Doe", result["order_id"], Decimal("2625.48")
        )

        laptop = await original_get(Product, products[0].id, populate_existing=True)
        mouse = await original_get(Product, products[1].id, populate_existing=True)
        assert laptop is not None and laptop.stock == 10
        assert mouse is not None and mouse.stock == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_raising_audit_calls_do_not_affect_failed_checkout(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
        mocker: Any,
    ) -> None:
        """Test exhaustion still persists FAILED_FINAL/CANCELLED when audit calls raise."""
        await fill_cart(test_db, audit, customer, products)
        mocker.patch.object(audit, "log_success", AsyncMock(side_effect=RuntimeError("audit down")))
        mocker.patch.object(audit, "log_failure", AsyncMock(side_effect=RuntimeError("audit down")))
        service, _, notifier = build_service(audit, approval_probability=0.0)

        with pytest.raises(PaymentFailedError, match="failed after 3 attempts"):
            await service.process_checkout(
                CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
            )

        notifier.send_payment_failure.assert_awaited_once()
        audit.log_failure.assert_awaited_once()
        payment = (
            await test_db.execute(
                select(Payment).execution_options(populate_existing=True)
            )
        ).scalar_one()
        order = await test_db.get(Order, payment.order_id, populate_existing=True)
        assert payment.status == "FAILED_FINAL"
        assert order is not None and order.status == "CANCELLED"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_status_is_read_only(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
        checkout_payload: dict[str, Any],
    ) -> None:
        """Test status queries return the stored state and write nothing."""
        await fill_cart(test_db, audit, customer, products)
        service, _, _ = build_service(audit, approval_probability=1.0)
        created = await service.process_checkout(
            CheckoutRequest(customer_id=customer.id, **checkout_payload), test_db
        )
        audit_count = (
            await test_db.execute(select(func.count()).select_from(AuditLog))
        ).scalar_one()

        first = await service.get_checkout_status(customer.id, created["order_id"], test_db)
        second = await service.get_checkout_status(customer.id, created["order_id"], test_db)

        assert first == second
        assert first["payment"]["status"] == "APPROVED"
        assert first["payment"]["updated_at"] == created["payment"]["updated_at"]
        assert not test_db.dirty
        after = (await test_db.execute(select(func.count()).select_from(AuditLog))).scalar_one()
        assert after == audit_count

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_status_without_payment(
        self,
        test_db: AsyncSession,
        audit: AuditRecorder,
        customer: Customer,
        products: List[Product],
    ) -> None:
        """Test a cart that was never checked out has no payment."""
        cart = await CartService(audit=audit).add_to_cart(
            customer.id, products[0].id, 1, test_db
        )
        service, _, _ = build_service(audit)

        with pytest.raises(PaymentFailedError, match=f"Payment not found for order {cart['id']}"):
            await service.get_checkout_status(customer.id, cart["id"], test_db)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_checkout_status_unknown_order(
        self, test_db: AsyncSession, audit: AuditRecorder, customer: Customer
    ) -> None:
        """Test unknown order id."""
        service, _, _ = build_service(audit)

        with pytest.raises(OrderNotFoundError, match="Order with ID 12345 not found"):
            await service.get_checkout_status(customer.id, 12345, test_db)
