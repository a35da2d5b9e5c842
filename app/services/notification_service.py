from dataclasses import dataclass
from typing import Optional

import httpx

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def compose_birthday_message(first_name: str, last_name: str) -> str:
    full_name = " ".join(part for part in (first_name, last_name) if part).strip()
    return f"Hey, {full_name} it's your birthday"


class NotificationService:
    """Posts notification messages to the configured webhook sink"""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url or settings.NOTIFICATION_WEBHOOK_URL
        self.timeout_seconds = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS
        self.transport = transport

    async def send_notification(self, message: str) -> NotificationResult:
        """
        Send one message to the webhook.

        Never raises: timeouts, transport errors and non-2xx responses all
        come back as a failed NotificationResult.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(self.webhook_url, json={"message": message})
                response.raise_for_status()

            logger.info(
                "Notification delivered to webhook", status_code=response.status_code
            )
            return NotificationResult(success=True, status_code=response.status_code)

        except httpx.TimeoutException as e:
            logger.warning(f"Notification webhook timed out: {str(e)}")
            return NotificationResult(success=False, error=f"timeout: {str(e)}")
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Notification webhook rejected message with status {e.response.status_code}"
            )
            return NotificationResult(
                success=False,
                status_code=e.response.status_code,
                error=f"HTTP {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.error(f"Notification webhook request failed: {str(e)}")
            return NotificationResult(success=False, error=str(e))


def get_notification_service() -> NotificationService:
    """Dependency to get NotificationService instance"""
    return NotificationService()
