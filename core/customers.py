"""Customer registration."""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.audit import AuditRecorder
from core.exceptions import DuplicateCustomerError
from core.projections import customer_to_dict
from database.models import Customer, EventType, utcnow

logger = structlog.get_logger(__name__)


class CustomerService:
    """Registers customers with unique email and phone number."""

    def __init__(self, audit: Optional[AuditRecorder] = None) -> None:
        self.audit = audit or AuditRecorder()

    async def register_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone_number: str,
        address: str,
        db: AsyncSession,
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip_code: Optional[str] = None,
        country: Optional[str] = None,
        source_ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Register a new customer.

        Raises:
            DuplicateCustomerError: If the email or phone number is already registered
        """
        normalized_email = email.strip().lower()
        logger.info("customer_registration_started", email=normalized_email)

        await self._ensure_unique(normalized_email, phone_number, db)

        now = utcnow()
        customer = Customer(
            first_name=first_name,
            last_name=last_name,
            email=normalized_email,
            phone_number=phone_number,
            address=address,
            city=city,
            state=state,
            zip_code=zip_code,
            country=country,
            active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(customer)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration
            await db.rollback()
            raise DuplicateCustomerError(
                f"Email '{email}' or phone number '{phone_number}' is already registered"
            )

        logger.info("customer_registered", customer_id=customer.id, email=customer.email)

        await self.audit.log_success(
            EventType.CUSTOMER_REGISTERED,
            "CUSTOMER",
            str(customer.id),
            str(customer.id),
            "Customer registered",
            source_ip=source_ip,
        )
        return customer_to_dict(customer)

    @staticmethod
    async def _ensure_unique(email: str, phone_number: str, db: AsyncSession) -> None:
        existing = await db.execute(select(Customer.id).where(Customer.email == email))
        if existing.first() is not None:
            logger.warning("customer_email_already_registered", email=email)
            raise DuplicateCustomerError(f"Email '{email}' is already registered")

        existing = await db.execute(
            select(Customer.id).where(Customer.phone_number == phone_number)
        )
        if existing.first() is not None:
            logger.warning("customer_phone_already_registered", phone_number=phone_number)
            raise DuplicateCustomerError(f"Phone number '{phone_number}' is already registered")
