"""
Audit trail recording and querying.

Events are written through their own session so that an audit failure, or
its rollback, can never undo the business change that produced it. Every
failure inside the recorder is logged and swallowed.
"""
import json
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.connection import get_session_factory
from database.models import AuditLog, EventStatus, EventType, utcnow
from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_TEXT_LENGTH = 500


def _json_default(value: Any) -> Any:
    """Serialize the non-JSON types that show up in event details."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class AuditPage:
    """One page of audit records, newest first."""

    items: List[AuditLog]
    total: int
    page: int
    size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0


class AuditRecorder:
    """
    Appends immutable audit events and serves filtered reads.

    Writes use a session from ``session_factory``; reads use the caller's
    session.
    """

    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ) -> None:
        """
        Initialize audit recorder.

        Args:
            session_factory: Factory for the recorder's own write sessions
        """
        self._session_factory = session_factory

    async def log_event(
        self,
        event_type: EventType | str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        description: Optional[str],
        details: Any = None,
        status: EventStatus | str = EventStatus.SUCCESS,
        error_message: Optional[str] = None,
        source_ip: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """
        Record an audit event.

        Args:
            event_type: Event type name (e.g. "PAYMENT_APPROVED")
            entity_type: Affected entity kind (e.g. "PAYMENT", "ORDER")
            entity_id: Affected entity id
            user_id: Acting user, if known
            description: Human readable description
            details: Optional object serialized to JSON
            status: SUCCESS, FAILURE, PENDING or RETRY
            error_message: Failure detail, if any
            source_ip: Client address, if known

        Returns:
            Optional[uuid.UUID]: Id of the new record, or None if it could not be written
        """
        try:
            event = EventType(event_type)
            event_status = EventStatus(status)
            details_json = (
                json.dumps(details, default=_json_default) if details is not None else None
            )

            record = AuditLog(
                id=uuid.uuid4(),
                event_type=event.value,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
                description=description[:MAX_TEXT_LENGTH] if description else description,
                details=details_json,
                status=event_status.value,
                error_message=error_message[:MAX_TEXT_LENGTH] if error_message else error_message,
                created_at=utcnow(),
                source_ip=source_ip,
            )

            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as session:
                session.add(record)
                await session.commit()

            logger.debug(
                "audit_event_logged",
                audit_id=str(record.id),
                event_type=event.value,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            return record.id

        except Exception as e:
            logger.error(
                "audit_event_failed",
                event_type=str(event_type),
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(e),
                exc_info=True,
            )
            metrics.record_audit_failure(str(getattr(event_type, "value", event_type)))
            return None

    async def log_success(
        self,
        event_type: EventType | str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        description: Optional[str],
        details: Any = None,
        source_ip: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """Record an event that completed successfully."""
        return await self.log_event(
            event_type, entity_type, entity_id, user_id, description, details,
            EventStatus.SUCCESS, None, source_ip,
        )

    async def log_failure(
        self,
        event_type: EventType | str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        description: Optional[str],
        error_message: Optional[str],
        details: Any = None,
        source_ip: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """Record an event that failed, with its error message."""
        return await self.log_event(
            event_type, entity_type, entity_id, user_id, description, details,
            EventStatus.FAILURE, error_message, source_ip,
        )

    async def log_retry(
        self,
        event_type: EventType | str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        description: Optional[str],
        details: Any = None,
        source_ip: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """Record an event that is being retried after a failure."""
        return await self.log_event(
            event_type, entity_type, entity_id, user_id, description, details,
            EventStatus.RETRY, None, source_ip,
        )

    # Read side

    async def get_by_id(self, db: AsyncSession, audit_id: uuid.UUID) -> Optional[AuditLog]:
        """Fetch one audit record, or None."""
        return await db.get(AuditLog, audit_id)

    async def list_by_entity_id(self, db: AsyncSession, entity_id: str) -> List[AuditLog]:
        """Full audit trail of one entity, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_entity_type(
        self, db: AsyncSession, entity_type: str, page: int = 0, size: int = 20
    ) -> AuditPage:
        return await self._paginate(db, [AuditLog.entity_type == entity_type], page, size)

    async def list_by_event_type(
        self, db: AsyncSession, event_type: EventType, page: int = 0, size: int = 20
    ) -> AuditPage:
        return await self._paginate(db, [AuditLog.event_type == event_type.value], page, size)

    async def list_by_user_id(
        self, db: AsyncSession, user_id: str, page: int = 0, size: int = 20
    ) -> AuditPage:
        return await self._paginate(db, [AuditLog.user_id == user_id], page, size)

    async def list_by_status(
        self, db: AsyncSession, status: EventStatus, page: int = 0, size: int = 20
    ) -> AuditPage:
        return await self._paginate(db, [AuditLog.status == status.value], page, size)

    async def list_by_date_range(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        page: int = 0,
        size: int = 20,
    ) -> AuditPage:
        """Records created between ``start`` and ``end`` inclusive."""
        return await self._paginate(db, [AuditLog.created_at.between(start, end)], page, size)

    async def list_by_event_type_and_status(
        self,
        db: AsyncSession,
        event_type: EventType,
        status: EventStatus,
        page: int = 0,
        size: int = 20,
    ) -> AuditPage:
        criteria = [AuditLog.event_type == event_type.value, AuditLog.status == status.value]
        return await self._paginate(db, criteria, page, size)

    async def _paginate(
        self, db: AsyncSession, criteria: list[Any], page: int, size: int
    ) -> AuditPage:
        count_stmt = select(func.count()).select_from(AuditLog).where(*criteria)
        total = (await db.execute(count_stmt)).scalar_one()

        stmt = (
            select(AuditLog)
            .where(*criteria)
            .order_by(AuditLog.created_at.desc())
            .offset(page * size)
            .limit(size)
        )
        result = await db.execute(stmt)
        return AuditPage(items=list(result.scalars().all()), total=total, page=page, size=size)
