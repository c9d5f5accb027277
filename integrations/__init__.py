"""External integrations for checkout."""
from .notifications import EmailNotifier
from .payment_gateway import SimulatedPaymentGateway

__all__ = ["EmailNotifier", "SimulatedPaymentGateway"]
