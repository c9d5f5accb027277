"""FastAPI dependency providers for the storefront services."""
from fastapi import Depends

from config import Settings, get_settings
from core.audit import AuditRecorder
from core.cart import CartService
from core.catalog import ProductService
from core.checkout import CheckoutConfig, CheckoutService
from core.customers import CustomerService
from core.tokenization import TokenizationService
from integrations.notifications import EmailNotifier
from integrations.payment_gateway import SimulatedPaymentGateway


def get_audit_recorder() -> AuditRecorder:
    return AuditRecorder()


def get_email_notifier(settings: Settings = Depends(get_settings)) -> EmailNotifier:
    return EmailNotifier(settings)


def get_customer_service(audit: AuditRecorder = Depends(get_audit_recorder)) -> CustomerService:
    return CustomerService(audit=audit)


def get_product_service(audit: AuditRecorder = Depends(get_audit_recorder)) -> ProductService:
    return ProductService(audit=audit)


def get_cart_service(audit: AuditRecorder = Depends(get_audit_recorder)) -> CartService:
    return CartService(audit=audit)


def get_checkout_service(
    settings: Settings = Depends(get_settings),
    audit: AuditRecorder = Depends(get_audit_recorder),
    notifier: EmailNotifier = Depends(get_email_notifier),
) -> CheckoutService:
    config = CheckoutConfig.from_settings(settings)
    return CheckoutService(
        config=config,
        gateway=SimulatedPaymentGateway(config.approval_probability),
        audit=audit,
        notifier=notifier,
    )


def get_tokenization_service(
    settings: Settings = Depends(get_settings),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> TokenizationService:
    return TokenizationService(
        rejection_probability=settings.tokenization_rejection_probability,
        audit=audit,
    )
