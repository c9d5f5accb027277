"""
Simulated card tokenization.

Exchanges raw card data for an opaque token. Only the last four digits,
brand, expiration and cardholder name are kept; the card number and CVV
never reach storage or logs.
"""
import hashlib
import random
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from config import get_settings
from core.audit import AuditRecorder
from core.exceptions import (
    InvalidCardDataError,
    TokenGenerationError,
    TokenizationRejectedError,
)
from core.projections import card_token_to_dict
from database.models import CardToken, EventType, utcnow
from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TOKEN_PREFIX = "tok_"
MAX_TOKEN_ATTEMPTS = 10

CARD_BRANDS = {"4": "VISA", "5": "MASTERCARD", "3": "AMEX"}


class TokenCollisionError(Exception):
    """Generated token already exists."""

    pass


def detect_card_brand(card_number: str) -> str:
    """Card brand from the leading digit."""
    return CARD_BRANDS.get(card_number[:1], "UNKNOWN")


def is_expired(expiration_date: str, now: datetime) -> bool:
    """
    Whether an MM/YY expiration is before the current month.

    Raises:
        InvalidCardDataError: If the date is not MM/YY
    """
    try:
        month_part, year_part = expiration_date.split("/")
        month = int(month_part)
        year = 2000 + int(year_part)
    except ValueError:
        raise InvalidCardDataError("Expiration date must be in MM/YY format")

    if not 1 <= month <= 12:
        raise InvalidCardDataError("Expiration date must be in MM/YY format")

    return year < now.year or (year == now.year and month < now.month)


class TokenizationService:
    """Validates card data and issues unique card tokens."""

    def __init__(
        self,
        rejection_probability: Optional[float] = None,
        audit: Optional[AuditRecorder] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize tokenization service.

        Args:
            rejection_probability: Chance in [0, 1] that a request is declined
            audit: Audit recorder
            rng: Random source for rejection draws
            clock: Current time, used for expiration checks
        """
        if rejection_probability is None:
            rejection_probability = get_settings().tokenization_rejection_probability
        self.rejection_probability = rejection_probability
        self.audit = audit or AuditRecorder()
        self.rng = rng or secrets.SystemRandom()
        self.clock = clock

    async def create_token(
        self,
        card_number: str,
        cvv: str,
        expiration_date: str,
        cardholder_name: str,
        db: AsyncSession,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Tokenize a card.

        Args:
            card_number: 13-19 digit card number
            cvv: Card security code, checked by the caller and discarded
            expiration_date: MM/YY
            cardholder_name: Name on the card
            db: Database session
            source_ip: Client address for the audit trail

        Returns:
            Dict with token, brand, last four digits, expiration, created_at, active

        Raises:
            InvalidCardDataError: If the card is expired or the date is malformed
            TokenizationRejectedError: If the request is declined
            TokenGenerationError: If no unique token could be generated
        """
        last_four = card_number[-4:]
        logger.info("tokenization_started", last_four=last_four)

        try:
            if is_expired(expiration_date, self.clock()):
                raise InvalidCardDataError("Card has expired")
        except InvalidCardDataError as e:
            logger.warning("tokenization_invalid_card", last_four=last_four, reason=str(e))
            metrics.record_tokenization("invalid")
            await self._audit_failure(last_four, str(e), source_ip)
            raise

        if self.rng.random() < self.rejection_probability:
            logger.warning("tokenization_rejected", last_four=last_four)
            metrics.record_tokenization("rejected")
            message = "Tokenization request was rejected. Please try again later."
            await self._audit_failure(last_four, message, source_ip)
            raise TokenizationRejectedError(message)

        token = await self._generate_unique_token(card_number, db)
        card_token = CardToken(
            token=token,
            last_four_digits=last_four,
            card_brand=detect_card_brand(card_number),
            expiration_date=expiration_date,
            cardholder_name=cardholder_name,
            active=True,
            created_at=utcnow(),
        )
        db.add(card_token)
        await db.commit()

        logger.info("token_created", card_brand=card_token.card_brand, last_four=last_four)
        metrics.record_tokenization("created")
        await self.audit.log_success(
            EventType.TOKENIZATION_COMPLETED,
            "CARD_TOKEN",
            str(card_token.id),
            None,
            f"Card ending in {last_four} tokenized",
            details={"card_brand": card_token.card_brand, "last_four_digits": last_four},
            source_ip=source_ip,
        )
        return card_token_to_dict(card_token)

    async def _generate_unique_token(self, card_number: str, db: AsyncSession) -> str:
        token = ""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(MAX_TOKEN_ATTEMPTS),
                retry=retry_if_exception_type(TokenCollisionError),
                reraise=True,
            ):
                with attempt:
                    token = self._generate_token(card_number)
                    if await self._token_exists(token, db):
                        logger.warning("token_collision", attempt=attempt.retry_state.attempt_number)
                        raise TokenCollisionError(token)
        except TokenCollisionError:
            logger.error("token_generation_exhausted", attempts=MAX_TOKEN_ATTEMPTS)
            metrics.record_tokenization("generation_failed")
            raise TokenGenerationError(
                f"Failed to generate unique token after {MAX_TOKEN_ATTEMPTS} attempts"
            )
        return token

    @staticmethod
    def _generate_token(card_number: str) -> str:
        """tok_ + first 32 hex chars of SHA-256 over card number, nonce and entropy."""
        material = f"{card_number}{secrets.token_hex(8)}{secrets.randbits(64)}"
        return TOKEN_PREFIX + hashlib.sha256(material.encode()).hexdigest()[:32]

    @staticmethod
    async def _token_exists(token: str, db: AsyncSession) -> bool:
        result = await db.execute(select(CardToken.id).where(CardToken.token == token))
        return result.first() is not None

    async def _audit_failure(
        self, last_four: str, reason: str, source_ip: Optional[str]
    ) -> None:
        await self.audit.log_failure(
            EventType.TOKENIZATION_FAILED,
            "CARD_TOKEN",
            None,
            None,
            f"Tokenization failed for card ending in {last_four}",
            reason,
            source_ip=source_ip,
        )
