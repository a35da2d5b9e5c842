from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.schemas.work_item_schemas import WorkItem
from app.services.dispatch_channel import ChannelMessage
from app.services.idempotency_gate import IdempotencyGate
from app.services.notification_service import (
    NotificationService,
    compose_birthday_message,
)
from app.services.person_service import PersonService
from app.utils.datetime_utils import get_current_year, to_utc, utc_now
from app.utils.errors import MalformedWorkItemError, NotFoundError
from app.utils.logging import get_logger

logger = get_logger()


class DeliveryStatus(str, Enum):
    SENT = "sent"
    SKIPPED_MALFORMED = "skipped_malformed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_ALREADY_NOTIFIED = "skipped_already_notified"
    FAILED_NOT_FOUND = "failed_not_found"
    FAILED_DELIVERY = "failed_delivery"
    FAILED_COMMIT = "failed_commit"


RETRYABLE_STATUSES = frozenset(
    {DeliveryStatus.FAILED_DELIVERY, DeliveryStatus.FAILED_COMMIT}
)


@dataclass
class DeliveryOutcome:
    status: DeliveryStatus
    person_id: Optional[str] = None
    year: Optional[int] = None
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @property
    def success(self) -> bool:
        return not self.status.value.startswith("failed")

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status.value,
            "person_id": self.person_id,
            "year": self.year,
            "error": self.error,
        }


@dataclass
class BatchReport:
    outcomes: List[DeliveryOutcome] = field(default_factory=list)
    item_failures: List[str] = field(default_factory=list)


class BirthdayDeliveryService:
    """
    Handles one delivered work item: idempotency check, webhook send, then
    the state commit.

    Ordering matters. Nothing is written until the sink confirms; the person
    record is committed before the short-lived marker is set, so a failure at
    any point leaves the person due for the next attempt.
    """

    def __init__(
        self,
        person_service: PersonService,
        notification_service: NotificationService,
        idempotency_gate: IdempotencyGate,
    ):
        self.person_service = person_service
        self.notification_service = notification_service
        self.idempotency_gate = idempotency_gate

    async def handle(
        self, payload: Optional[str], reference_instant: Optional[datetime] = None
    ) -> DeliveryOutcome:
        try:
            work_item = WorkItem.from_payload(payload)
        except MalformedWorkItemError as e:
            logger.warning(f"Dropping malformed work item: {e.message}")
            return DeliveryOutcome(DeliveryStatus.SKIPPED_MALFORMED, error=e.message)

        # The scan's reference keeps "this year" identical across redeliveries
        reference = to_utc(reference_instant or work_item.reference_instant or utc_now())
        year = get_current_year(reference)
        person_id = work_item.person_id
        log = logger.bind(person_id=person_id, year=year)

        try:
            already_marked = self.idempotency_gate.is_marked(person_id, year)
        except Exception as e:
            # The stored notified year below still guards against a resend
            log.warning(f"Idempotency check failed, relying on stored state: {str(e)}")
            already_marked = False

        if already_marked:
            log.info("Birthday notification already handled recently, skipping")
            return DeliveryOutcome(DeliveryStatus.SKIPPED_DUPLICATE, person_id, year)

        person = await self.person_service.get_person_by_id(person_id)
        if person is None:
            log.error("Person no longer exists, dropping work item")
            return DeliveryOutcome(
                DeliveryStatus.FAILED_NOT_FOUND, person_id, year, "PERSON_NOT_FOUND"
            )

        if person.last_notification_year >= year:
            log.info("Person already notified this year, skipping")
            return DeliveryOutcome(
                DeliveryStatus.SKIPPED_ALREADY_NOTIFIED, person_id, year
            )

        message = compose_birthday_message(person.first_name, person.last_name)
        result = await self.notification_service.send_notification(message)
        if not result.success:
            log.warning(f"Birthday notification failed: {result.error}")
            return DeliveryOutcome(
                DeliveryStatus.FAILED_DELIVERY, person_id, year, result.error
            )

        try:
            await self.person_service.mark_notification_sent(person_id, reference)
        except NotFoundError as e:
            log.error(f"Person deleted before commit: {e.message}")
            return DeliveryOutcome(
                DeliveryStatus.FAILED_NOT_FOUND, person_id, year, e.error_code
            )
        except SQLAlchemyError as e:
            log.error(f"Failed to commit notification state: {str(e)}")
            return DeliveryOutcome(
                DeliveryStatus.FAILED_COMMIT, person_id, year, str(e)
            )

        try:
            if not self.idempotency_gate.mark(person_id, year):
                log.warning("Idempotency marker already present after commit")
        except Exception as e:
            # State is committed; the yearly field alone keeps this person from firing again
            log.warning(f"Failed to set idempotency marker: {str(e)}")

        log.info("Birthday notification sent")
        return DeliveryOutcome(DeliveryStatus.SENT, person_id, year)

    async def handle_batch(
        self,
        messages: Iterable[ChannelMessage],
        reference_instant: Optional[datetime] = None,
    ) -> BatchReport:
        """
        Handle a batch with per-message isolation.

        Only retryable failures are reported back in item_failures; malformed
        and not-found items are acknowledged so they are never redelivered.
        """
        report = BatchReport()
        for message in messages:
            try:
                outcome = await self.handle(message.body, reference_instant)
            except Exception as e:
                logger.error(
                    "Unexpected error handling work item",
                    message_id=message.message_id,
                    error=str(e),
                )
                outcome = DeliveryOutcome(DeliveryStatus.FAILED_DELIVERY, error=str(e))

            report.outcomes.append(outcome)
            if outcome.retryable:
                report.item_failures.append(message.message_id)

        logger.info(
            "Processed birthday work item batch",
            total=len(report.outcomes),
            failed=len(report.item_failures),
        )
        return report
