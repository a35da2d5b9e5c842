import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

from app.schemas.work_item_schemas import WorkItem
from app.services.birthday_delivery_service import BirthdayDeliveryService
from app.services.birthday_scan_service import BirthdayScanService, ScanResult
from app.services.dispatch_channel import InMemoryDispatchChannel
from app.utils.errors import DispatchError, StorageUnavailableError

REFERENCE = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
QUEUE = "birthday-notifications-queue"


class FlakyChannel(InMemoryDispatchChannel):
    """Fails to publish work items for the given person IDs."""

    def __init__(self, failing_person_ids):
        super().__init__()
        self.failing_person_ids = set(failing_person_ids)

    def send(self, destination, payload):
        if WorkItem.from_payload(payload).person_id in self.failing_person_ids:
            raise DispatchError("broker unavailable")
        return super().send(destination, payload)


class TestScan:
    @pytest.mark.asyncio
    async def test_no_due_persons_is_a_noop(self, person_service, make_person):
        make_person(datetime(2024, 12, 25, 14, 0, tzinfo=timezone.utc), 0)
        channel = InMemoryDispatchChannel()

        result = await BirthdayScanService(person_service, channel, QUEUE, 60).scan(REFERENCE)

        assert result.total_found == 0
        assert result.dispatched_count == 0
        assert channel.pending_count(QUEUE) == 0

    @pytest.mark.asyncio
    async def test_dispatches_one_work_item_per_due_person(self, person_service, make_person):
        first = make_person(datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc), 2023)
        second = make_person(REFERENCE + timedelta(seconds=30), 0, first_name="Ann")
        make_person(datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc), 2024)
        channel = InMemoryDispatchChannel()

        result = await BirthdayScanService(person_service, channel, QUEUE, 60).scan(REFERENCE)

        assert result.total_found == 2
        assert result.current_year == 2024
        assert channel.pending_count(QUEUE) == 2

        items = [WorkItem.from_payload(m.body) for m in channel.receive_batch(QUEUE)]
        assert [item.person_id for item in items] == [first.id, second.id]
        assert items[1].first_name == "Ann"
        assert all(item.reference_instant == REFERENCE for item in items)

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_abort_scan(self, person_service, make_person):
        failing = make_person(datetime(2024, 6, 1, 14, 0, tzinfo=timezone.utc), 0)
        ok = make_person(datetime(2024, 6, 2, 14, 0, tzinfo=timezone.utc), 0)
        channel = FlakyChannel([failing.id])

        result = await BirthdayScanService(person_service, channel, QUEUE, 60).scan(REFERENCE)

        assert result.failed_person_ids == [failing.id]
        assert [item.person_id for item in result.dispatched] == [ok.id]
        assert result.to_dict()["failed_count"] == 1

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self):
        person_service = Mock()
        person_service.get_persons_due_for_notification = AsyncMock(
            side_effect=StorageUnavailableError("database is down")
        )
        channel = InMemoryDispatchChannel()

        with pytest.raises(StorageUnavailableError):
            await BirthdayScanService(person_service, channel, QUEUE).scan(REFERENCE)
        assert channel.pending_count(QUEUE) == 0

    def test_result_serialization(self):
        result = ScanResult(reference_instant=REFERENCE, current_year=2024)
        assert result.to_dict() == {
            "reference_instant": "2024-06-15T12:00:00Z",
            "current_year": 2024,
            "total_found": 0,
            "dispatched_count": 0,
            "failed_count": 0,
            "failed_person_ids": [],
        }


class TestScanDeliveryCycle:
    """Scanner and consumer wired through the in-memory channel."""

    @pytest.mark.asyncio
    async def test_delivered_person_is_not_due_again(
        self, person_service, notification_service, idempotency_gate, make_person
    ):
        make_person(datetime(2024, 6, 15, 13, 0, tzinfo=timezone.utc), 2023)
        channel = InMemoryDispatchChannel()
        scanner = BirthdayScanService(person_service, channel, QUEUE, 60)
        consumer = BirthdayDeliveryService(person_service, notification_service, idempotency_gate)
        scan_time = datetime(2024, 6, 15, 13, 0, 30, tzinfo=timezone.utc)

        await scanner.scan(scan_time)
        batch = channel.receive_batch(QUEUE)
        report = await consumer.handle_batch(batch)
        for message in batch:
            channel.ack(message.message_id)

        assert report.item_failures == []
        assert channel.in_flight_count() == 0

        # Later ticks this year find nothing
        for minutes in (1, 60, 60 * 24 * 30):
            result = await scanner.scan(scan_time + timedelta(minutes=minutes))
            assert result.total_found == 0
        assert len(notification_service.messages) == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_sends_once(
        self, person_service, notification_service, idempotency_gate, make_person
    ):
        make_person(datetime(2024, 6, 15, 13, 0, tzinfo=timezone.utc), 2023)
        channel = InMemoryDispatchChannel()
        consumer = BirthdayDeliveryService(person_service, notification_service, idempotency_gate)

        await BirthdayScanService(person_service, channel, QUEUE, 60).scan(
            datetime(2024, 6, 15, 13, 0, 30, tzinfo=timezone.utc)
        )
        message = channel.receive_batch(QUEUE)[0]
        channel.redeliver(message)
        batch = [message] + channel.receive_batch(QUEUE)
        await consumer.handle_batch(batch)

        assert len(notification_service.messages) == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_is_redelivered_then_dead_lettered(
        self, person_service, failing_notification_service, idempotency_gate, make_person
    ):
        make_person(datetime(2024, 6, 15, 13, 0, tzinfo=timezone.utc), 2023)
        channel = InMemoryDispatchChannel(max_receive_count=2)
        consumer = BirthdayDeliveryService(
            person_service, failing_notification_service, idempotency_gate
        )

        await BirthdayScanService(person_service, channel, QUEUE, 60).scan(
            datetime(2024, 6, 15, 13, 0, 30, tzinfo=timezone.utc)
        )

        for _ in range(2):
            batch = channel.receive_batch(QUEUE)
            report = await consumer.handle_batch(batch)
            for message_id in report.item_failures:
                channel.fail(message_id)

        assert len(failing_notification_service.messages) == 2
        assert channel.pending_count(QUEUE) == 0
        assert len(channel.dead_letters) == 1
        assert channel.dead_letters[0].receive_count == 2
