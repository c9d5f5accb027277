"""
Tests for the audit recorder.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.audit import AuditPage, AuditRecorder
from database.models import AuditLog, EventStatus, EventType


class TestAuditRecorder:
    """Test suite for AuditRecorder writes."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_log_event_persists_record(
        self, test_db: AsyncSession, audit: AuditRecorder
    ) -> None:
        """Test an event is stored with serialized details."""
        audit_id = await audit.log_success(
            EventType.PAYMENT_APPROVED,
            "PAYMENT",
            "42",
            "7",
            "Payment approved on attempt 1",
            details={"amount": Decimal("25.50")},
            source_ip="10.0.0.1",
        )

        assert isinstance(audit_id, uuid.UUID)
        record = await audit.get_by_id(test_db, audit_id)
        assert record is not None
        assert record.event_type == "PAYMENT_APPROVED"
        assert record.status == "SUCCESS"
        assert record.source_ip == "10.0.0.1"
        assert json.loads(record.details or "") == {"amount": "25.50"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_log_failure_keeps_error_message(
        self, test_db: AsyncSession, audit: AuditRecorder
    ) -> None:
        """Test failure events carry the error message."""
        audit_id = await audit.log_failure(
            "PAYMENT_REJECTED", "PAYMENT", "1", None, "Rejected", "Declined by gateway"
        )

        record = await audit.get_by_id(test_db, audit_id)  # type: ignore[arg-type]
        assert record is not None
        assert record.status == "FAILURE"
        assert record.error_message == "Declined by gateway"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_event_type_is_swallowed(
        self, test_db: AsyncSession, audit: AuditRecorder
    ) -> None:
        """Test an unknown event type name returns None and writes nothing."""
        result = await audit.log_event("NOT_AN_EVENT", "ORDER", "1", None, "nope")

        assert result is None
        count = await test_db.execute(select(func.count()).select_from(AuditLog))
        assert count.scalar_one() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unserializable_details_are_swallowed(self, audit: AuditRecorder) -> None:
        """Test details that cannot be serialized do not raise."""
        result = await audit.log_success(
            EventType.ORDER_CREATED, "ORDER", "1", None, "Order", details={"bad": object()}
        )

        assert result is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self) -> None:
        """Test a failing session factory never propagates."""

        def broken_factory() -> None:
            raise RuntimeError("database down")

        recorder = AuditRecorder(session_factory=broken_factory)  # type: ignore[arg-type]

        result = await recorder.log_retry(EventType.PAYMENT_ATTEMPTED, "PAYMENT", "1", None, "x")

        assert result is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_long_text_is_truncated(
        self, test_db: AsyncSession, audit: AuditRecorder
    ) -> None:
        """Test description and error message are cut to column size."""
        audit_id = await audit.log_failure(
            EventType.EMAIL_FAILED, "EMAIL", "1", None, "d" * 800, "e" * 800
        )

        record = await audit.get_by_id(test_db, audit_id)  # type: ignore[arg-type]
        assert record is not None
        assert len(record.description or "") == 500
        assert len(record.error_message or "") == 500


class TestAuditQueries:
    """Test suite for AuditRecorder reads."""

    async def _seed(self, audit: AuditRecorder) -> None:
        await audit.log_success(EventType.ORDER_CREATED, "ORDER", "1", "7", "Order 1")
        await audit.log_success(EventType.PAYMENT_INITIATED, "PAYMENT", "10", "7", "Payment 10")
        await audit.log_retry(EventType.PAYMENT_ATTEMPTED, "PAYMENT", "10", "7", "Attempt 1")
        await audit.log_failure(
            EventType.PAYMENT_REJECTED, "PAYMENT", "10", "7", "Rejected", "Declined"
        )
        await audit.log_success(EventType.ORDER_CANCELLED, "ORDER", "1", "8", "Cancelled")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_by_entity_id_newest_first(
        self, test_db: AsyncSession, audit: AuditRecorder
    ) -> None:
        """Test an entity's trail comes back newest first."""
        await self._seed(audit)

        records = await audit.list_by_entity_id(test_db, "10")

        assert [r.event_type for r in records] == [
            "PAYMENT_REJECTED",
            "PAYMENT_ATTEMPTED",
            "PAYMENT_INITIATED",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_filters(self, test_db: AsyncSession, audit: AuditRecorder) -> None:
        """Test each paginated filter."""
        await self._seed(audit)

        by_type = await audit.list_by_entity_type(test_db, "ORDER")
        assert by_type.total == 2

        by_event = await audit.list_by_event_type(test_db, EventType.PAYMENT_ATTEMPTED)
        assert by_event.total == 1

        by_user = await audit.list_by_user_id(test_db, "7")
        assert by_user.total == 4

        by_status = await audit.list_by_status(test_db, EventStatus.FAILURE)
        assert [r.event_type for r in by_status.items] == ["PAYMENT_REJECTED"]

        combined = await audit.list_by_event_type_and_status(
            test_db, EventType.ORDER_CREATED, EventStatus.SUCCESS
        )
        assert combined.total == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pagination(self, test_db: AsyncSession, audit: AuditRecorder) -> None:
        """Test page/size slicing and page count."""
        await self._seed(audit)

        first = await audit.list_by_user_id(test_db, "7", page=0, size=3)
        second = await audit.list_by_user_id(test_db, "7", page=1, size=3)

        assert isinstance(first, AuditPage)
        assert first.total == 4
        assert first.pages == 2
        assert len(first.items) == 3
        assert len(second.items) == 1
        assert {r.id for r in first.items}.isdisjoint({r.id for r in second.items})

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_date_range(self, test_db: AsyncSession, audit: AuditRecorder) -> None:
        """Test records inside and outside a date range."""
        await self._seed(audit)
        now = datetime.now(timezone.utc)

        inside = await audit.list_by_date_range(
            test_db, now - timedelta(hours=1), now + timedelta(hours=1)
        )
        outside = await audit.list_by_date_range(
            test_db, now - timedelta(days=3), now - timedelta(days=2)
        )

        assert inside.total == 5
        assert outside.total == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, test_db: AsyncSession, audit: AuditRecorder) -> None:
        """Test an unknown id returns None."""
        assert await audit.get_by_id(test_db, uuid.uuid4()) is None
