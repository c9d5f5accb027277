"""
Simulated card payment gateway.

Approves each authorization independently with a fixed probability. No
network calls are made; the token and amount are only logged.
"""
import random
from decimal import Decimal
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class SimulatedPaymentGateway:
    """Bernoulli authorization step used by checkout."""

    def __init__(
        self,
        approval_probability: float,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize gateway.

        Args:
            approval_probability: Chance in [0, 1] that an attempt is approved
            rng: Random source, seeded in tests
        """
        if not 0.0 <= approval_probability <= 1.0:
            raise ValueError("approval_probability must be between 0 and 1")
        self.approval_probability = approval_probability
        self.rng = rng or random.Random()

    async def authorize(self, tokenized_card: str, amount: Decimal) -> bool:
        """
        Attempt to authorize a charge.

        Returns:
            bool: True if approved
        """
        approved = self.rng.random() < self.approval_probability
        logger.debug(
            "gateway_authorization",
            approved=approved,
            amount=str(amount),
            card_suffix=tokenized_card[-4:],
        )
        return approved
