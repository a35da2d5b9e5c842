import asyncio
from datetime import datetime
from typing import Optional

from app.celery import celery
from app.db.session import get_sync_session
from app.services.birthday_scan_service import BirthdayScanService
from app.services.dispatch_channel import DispatchChannel, get_dispatch_channel
from app.services.person_service import PersonService
from app.utils.context import set_request_id
from app.utils.datetime_utils import utc_now
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def birthday_reminder_scanner_task(self, request_id: str):
    """
    Periodic scan for birthdays that are due.

    Runs every SCAN_INTERVAL_SECONDS from Celery beat. Each due person is
    published as one work item to the notifier queue. A failed cycle is not
    retried here; the next tick starts from scratch.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_birthday_reminder_scanner(request_id))


async def _async_birthday_reminder_scanner(
    request_id: str,
    reference_instant: Optional[datetime] = None,
    channel: Optional[DispatchChannel] = None,
):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)
    reference = reference_instant or utc_now()

    for db_session in get_sync_session():
        try:
            scan_service = BirthdayScanService(
                PersonService(db_session), channel or get_dispatch_channel()
            )
            result = await scan_service.scan(reference)

            return {
                "success": True,
                "request_id": request_id,
                **result.to_dict(),
            }

        except Exception as e:
            logger.error(
                "Birthday reminder scanner task exception",
                request_id=request_id,
                error=str(e),
            )

            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
