"""
Health checks backing /health, /health/live and /health/ready.

The database is critical: the service is not ready without it. The SMTP
relay is reported but never makes the service unhealthy, since email
delivery is best-effort.
"""
import asyncio
import smtplib
import time
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, get_settings
from database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when a critical dependency is unreachable."""

    pass


class HealthCheck:
    """Probes the service's dependencies."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize health check service.

        Args:
            session_factory: Session factory to probe, defaults to the global one
            settings: Application settings, defaults to the cached settings
        """
        self._session_factory = session_factory
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def check_database(self) -> Dict[str, Any]:
        """
        Run SELECT 1 against the database.

        Raises:
            HealthCheckError: If the query fails
        """
        started = time.perf_counter()
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}")

        return {
            "status": "healthy",
            "service": "database",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def check_smtp(self) -> Dict[str, Any]:
        """Open and close an SMTP connection; skipped when email is disabled."""
        if not self.settings.email_notification_enabled:
            return {"status": "disabled", "service": "smtp"}

        def probe() -> None:
            with smtplib.SMTP(
                self.settings.smtp_host,
                self.settings.smtp_port,
                timeout=self.settings.smtp_timeout_seconds,
            ) as server:
                server.noop()

        try:
            await asyncio.get_running_loop().run_in_executor(None, probe)
        except Exception as e:
            logger.warning("smtp_health_check_failed", error=str(e))
            return {"status": "degraded", "service": "smtp", "error": str(e)}
        return {"status": "healthy", "service": "smtp"}

    async def check_all(self) -> Dict[str, Any]:
        """Overall status: unhealthy only when the database is down."""
        checks: Dict[str, Any] = {}
        healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {"status": "unhealthy", "service": "database", "error": str(e)}
            healthy = False

        checks["smtp"] = await self.check_smtp()

        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """Process is up; no dependency checks."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        """Ready when the database answers."""
        try:
            database = await self.check_database()
        except HealthCheckError as e:
            return {"status": "unhealthy", "checks": {"database": {"error": str(e)}}}
        return {"status": "healthy", "checks": {"database": database}}
