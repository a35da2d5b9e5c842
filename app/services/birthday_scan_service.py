from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from app.config.settings import settings
from app.schemas.work_item_schemas import WorkItem
from app.services.dispatch_channel import DispatchChannel
from app.services.person_service import PersonService
from app.utils.datetime_utils import format_iso_utc, get_current_year, to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()


@dataclass
class ScanResult:
    reference_instant: datetime
    current_year: int
    total_found: int = 0
    dispatched: List[WorkItem] = field(default_factory=list)
    failed_person_ids: List[str] = field(default_factory=list)

    @property
    def dispatched_count(self) -> int:
        return len(self.dispatched)

    def to_dict(self) -> dict:
        return {
            "reference_instant": format_iso_utc(self.reference_instant),
            "current_year": self.current_year,
            "total_found": self.total_found,
            "dispatched_count": self.dispatched_count,
            "failed_count": len(self.failed_person_ids),
            "failed_person_ids": self.failed_person_ids,
        }


class BirthdayScanService:
    """Finds persons whose birthday occurrence is due and hands them to the dispatch channel"""

    def __init__(
        self,
        person_service: PersonService,
        channel: DispatchChannel,
        destination: Optional[str] = None,
        buffer_seconds: Optional[int] = None,
    ):
        self.person_service = person_service
        self.channel = channel
        self.destination = destination or settings.NOTIFIER_QUEUE_NAME
        self.buffer_seconds = (
            settings.SCAN_BUFFER_SECONDS if buffer_seconds is None else buffer_seconds
        )

    async def scan(self, reference_instant: Optional[datetime] = None) -> ScanResult:
        """
        Run one scan cycle.

        Storage errors propagate and fail the whole cycle. Publish errors are
        isolated per person; whatever was already published stays dispatched.
        """
        reference = to_utc(reference_instant or utc_now())
        result = ScanResult(
            reference_instant=reference, current_year=get_current_year(reference)
        )

        due_persons = await self.person_service.get_persons_due_for_notification(
            reference, self.buffer_seconds
        )
        result.total_found = len(due_persons)

        if not due_persons:
            logger.info("No birthdays due", reference_instant=format_iso_utc(reference))
            return result

        for person in due_persons:
            try:
                work_item = WorkItem.from_person(person, reference)
                self.channel.send(self.destination, work_item.to_payload())
                result.dispatched.append(work_item)
            except Exception as e:
                logger.error(
                    "Failed to dispatch birthday work item",
                    person_id=person.id,
                    error=str(e),
                )
                result.failed_person_ids.append(person.id)
                continue

        logger.info(
            "Birthday scan completed",
            reference_instant=format_iso_utc(reference),
            total_found=result.total_found,
            dispatched_count=result.dispatched_count,
            failed_count=len(result.failed_person_ids),
        )
        return result
