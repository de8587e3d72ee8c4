"""Notification delivery client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict
import httpx
from tuition_billing.config import settings
from tuition_billing.domain.exceptions import NotificationDeliveryError
from tuition_billing.infrastructure.observability.metrics import (
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for handing receipts and overdue reminders to the notification delivery service"""

    def __init__(self, webhook_url: str | None = None, reminder_webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.reminder_webhook_url = reminder_webhook_url or settings.overdue_reminder_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds

    async def _post(self, url: str, payload: Dict[str, Any], kind: str) -> None:
        """
        Post an event, retrying on 5xx responses and network failures.

        Backoff doubles per attempt starting at webhook_backoff_base seconds.

        Raises:
            NotificationDeliveryError: every attempt failed
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(url, json=payload, timeout=self.timeout)
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise NotificationDeliveryError(
                            f"{kind} delivery failed after {attempt} attempts: {e}"
                        ) from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

    async def send_payment_receipt(self, payload: Dict[str, Any]) -> None:
        await self._post(self.webhook_url, payload, "Receipt")

    async def send_overdue_reminder(self, payload: Dict[str, Any]) -> None:
        await self._post(self.reminder_webhook_url, payload, "Overdue reminder")

    async def deliver_receipt(self, payload: Dict[str, Any]) -> bool:
        """Best-effort delivery; failures are logged and never reach the payment write"""
        try:
            await self.send_payment_receipt(payload)
            return True
        except NotificationDeliveryError as e:
            logger.warning(f"Receipt notification dropped: {e}", extra={"invoice_id": payload.get("invoice_id")})
            return False
