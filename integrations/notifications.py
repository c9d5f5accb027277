"""
Customer email notifications for checkout outcomes.

Sending is best-effort: every failure is logged and reported through the
return value, never raised to the caller.
"""
import asyncio
import smtplib
from decimal import Decimal
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape
from typing import Optional

import structlog

from config import Settings, get_settings
from monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

APPROVED_TEMPLATE = """\
<html>
  <body style="font-family: Arial, sans-serif; color: #333;">
    <h2 style="color: #2e7d32;">Payment Approved</h2>
    <p>Hello {name},</p>
    <p>Your payment for order <strong>#{order_id}</strong> has been approved.</p>
    <p>Amount charged: <strong>${amount}</strong></p>
    <p>We will let you know when your order ships.</p>
    <p>Thank you for shopping with {sender}.</p>
  </body>
</html>
"""

FAILURE_TEMPLATE = """\
<html>
  <body style="font-family: Arial, sans-serif; color: #333;">
    <h2 style="color: #c62828;">Payment Failed</h2>
    <p>Hello {name},</p>
    <p>We could not process the payment for order <strong>#{order_id}</strong>.</p>
    <p>Reason: {reason}</p>
    <p>The order has been cancelled. Please try again with another card or contact support.</p>
    <p>{sender}</p>
  </body>
</html>
"""


class EmailNotifier:
    """Sends HTML emails over SMTP from a worker thread."""

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize notifier.

        Args:
            settings: Application settings, defaults to the cached settings
        """
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return self.settings.email_notification_enabled

    async def send_payment_approved(
        self, email: str, name: str, order_id: int, amount: Decimal
    ) -> bool:
        """
        Notify a customer that their payment was approved.

        Returns:
            bool: True if the email was handed to the SMTP server
        """
        body = APPROVED_TEMPLATE.format(
            name=escape(name),
            order_id=order_id,
            amount=escape(str(amount)),
            sender=escape(self.settings.email_from_name),
        )
        return await self._send(
            "payment_approved", email, f"Payment Approved - Order {order_id}", body, order_id
        )

    async def send_payment_failure(
        self, email: str, name: str, order_id: int, reason: Optional[str]
    ) -> bool:
        """
        Notify a customer that their payment failed and the order was cancelled.

        Returns:
            bool: True if the email was handed to the SMTP server
        """
        body = FAILURE_TEMPLATE.format(
            name=escape(name),
            order_id=order_id,
            reason=escape(reason or "Payment declined"),
            sender=escape(self.settings.email_from_name),
        )
        return await self._send(
            "payment_failed", email, f"Payment Failed - Order {order_id}", body, order_id
        )

    async def _send(
        self, kind: str, recipient: str, subject: str, html_body: str, order_id: int
    ) -> bool:
        if not self.enabled:
            logger.debug("email_notifications_disabled", kind=kind, order_id=order_id)
            metrics.record_email(kind, "skipped")
            return False

        logger.info("email_sending", kind=kind, recipient=recipient, order_id=order_id)

        try:
            message = self._build_message(recipient, subject, html_body)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._deliver, recipient, message)
        except Exception as e:
            logger.error(
                "email_send_failed",
                kind=kind,
                recipient=recipient,
                order_id=order_id,
                error=str(e),
                exc_info=True,
            )
            metrics.record_email(kind, "failed")
            return False

        logger.info("email_sent", kind=kind, recipient=recipient, order_id=order_id)
        metrics.record_email(kind, "sent")
        return True

    def _build_message(self, recipient: str, subject: str, html_body: str) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = formataddr(
            (self.settings.email_from_name, self.settings.email_from_address)
        )
        message["To"] = recipient
        message["Subject"] = subject
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    def _deliver(self, recipient: str, message: MIMEMultipart) -> None:
        """Blocking SMTP delivery; runs in the default executor."""
        with smtplib.SMTP(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.smtp_timeout_seconds,
        ) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username and self.settings.smtp_password:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.sendmail(self.settings.email_from_address, [recipient], message.as_string())
