import asyncio
from typing import Optional

from celery.exceptions import MaxRetriesExceededError

from app.celery import celery
from app.config.settings import settings
from app.db.session import get_sync_session
from app.services.birthday_delivery_service import (
    BirthdayDeliveryService,
    DeliveryOutcome,
    DeliveryStatus,
)
from app.services.dispatch_channel import get_dispatch_channel
from app.services.idempotency_gate import IdempotencyGate, get_idempotency_gate
from app.services.notification_service import (
    NotificationService,
    get_notification_service,
)
from app.services.person_service import PersonService
from app.utils.context import new_request_id, set_request_id
from app.utils.logging import get_logger


@celery.task(
    bind=True,
    acks_late=True,
    max_retries=settings.DELIVERY_MAX_RETRIES,
    default_retry_delay=settings.DELIVERY_RETRY_DELAY_SECONDS,
)
def send_birthday_notification_task(self, payload: str):
    """
    Consume one birthday work item from the notifier queue.

    Celery may deliver the same payload more than once; BirthdayDeliveryService
    makes that safe. Retryable failures are retried with backoff, and once
    retries run out the payload is parked on the dead-letter queue.

    Args:
        payload: WorkItem JSON published by the scanner
    """
    request_id = self.request.id or new_request_id("birthday")
    result = asyncio.run(_async_send_birthday_notification(request_id, payload))

    if result.get("retryable"):
        try:
            raise self.retry(
                countdown=settings.DELIVERY_RETRY_DELAY_SECONDS
                * (2 ** self.request.retries)
            )
        except MaxRetriesExceededError:
            _dead_letter(request_id, payload, result)

    return result


async def _async_send_birthday_notification(
    request_id: str,
    payload: str,
    notification_service: Optional[NotificationService] = None,
    idempotency_gate: Optional[IdempotencyGate] = None,
):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            delivery_service = BirthdayDeliveryService(
                PersonService(db_session),
                notification_service or get_notification_service(),
                idempotency_gate or get_idempotency_gate(),
            )
            outcome = await delivery_service.handle(payload)

        except Exception as e:
            logger.error(
                "Birthday notification task exception",
                request_id=request_id,
                error=str(e),
            )
            outcome = DeliveryOutcome(DeliveryStatus.FAILED_DELIVERY, error=str(e))

        return {
            **outcome.to_dict(),
            "retryable": outcome.retryable,
            "request_id": request_id,
        }


def _dead_letter(request_id: str, payload: str, result: dict) -> None:
    logger = get_logger().bind(request_id=request_id)
    logger.error(
        "Birthday notification retries exhausted, moving to dead-letter queue",
        person_id=result.get("person_id"),
        status=result.get("status"),
        error=result.get("error"),
    )
    try:
        get_dispatch_channel().send(settings.DEAD_LETTER_QUEUE_NAME, payload)
    except Exception as e:
        logger.error(f"Failed to publish to dead-letter queue: {str(e)}")
