import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import SQLAlchemyError

from app.schemas.work_item_schemas import WorkItem
from app.services.birthday_delivery_service import (
    BirthdayDeliveryService,
    DeliveryStatus,
)
from app.services.dispatch_channel import InMemoryDispatchChannel
from app.services.notification_service import NotificationResult

# Scan ran 30 seconds after the 9 AM EDT occurrence
OCCURRENCE = datetime(2024, 6, 15, 13, 0, 0, tzinfo=timezone.utc)
SCAN_REFERENCE = datetime(2024, 6, 15, 13, 0, 30, tzinfo=timezone.utc)
QUEUE = "birthday-notifications-queue"


@pytest.fixture
def due_person(make_person):
    return make_person(OCCURRENCE, 2023)


@pytest.fixture
def payload(due_person):
    return WorkItem.from_person(due_person, SCAN_REFERENCE).to_payload()


@pytest.fixture
def delivery_service(person_service, notification_service, idempotency_gate):
    return BirthdayDeliveryService(person_service, notification_service, idempotency_gate)


class TestHandle:
    @pytest.mark.asyncio
    async def test_successful_delivery_commits_and_marks(
        self,
        delivery_service,
        notification_service,
        idempotency_gate,
        db_session,
        due_person,
        payload,
    ):
        outcome = await delivery_service.handle(payload)

        assert outcome.status == DeliveryStatus.SENT
        assert outcome.success and not outcome.retryable
        assert outcome.year == 2024
        assert notification_service.messages == ["Hey, John Doe it's your birthday"]

        db_session.refresh(due_person)
        assert due_person.last_notification_year == 2024
        assert due_person.next_birthday_utc == datetime(2025, 6, 15, 13, 0)
        assert idempotency_gate.is_marked(due_person.id, 2024)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad_payload", [None, "", "   ", "{not json", '{"personId": "abc"}', "[]"]
    )
    async def test_malformed_payload_is_dropped(
        self, delivery_service, notification_service, bad_payload
    ):
        outcome = await delivery_service.handle(bad_payload)

        assert outcome.status == DeliveryStatus.SKIPPED_MALFORMED
        assert not outcome.retryable
        assert notification_service.messages == []

    @pytest.mark.asyncio
    async def test_marked_item_is_skipped(
        self, delivery_service, notification_service, idempotency_gate, due_person, payload
    ):
        idempotency_gate.mark(due_person.id, 2024)

        outcome = await delivery_service.handle(payload)

        assert outcome.status == DeliveryStatus.SKIPPED_DUPLICATE
        assert notification_service.messages == []

    @pytest.mark.asyncio
    async def test_deleted_person_is_not_retried(
        self, delivery_service, notification_service, db_session, due_person, payload
    ):
        db_session.delete(due_person)
        db_session.commit()

        outcome = await delivery_service.handle(payload)

        assert outcome.status == DeliveryStatus.FAILED_NOT_FOUND
        assert not outcome.retryable
        assert notification_service.messages == []

    @pytest.mark.asyncio
    async def test_already_notified_person_is_skipped(
        self, delivery_service, notification_service, db_session, due_person, payload
    ):
        due_person.last_notification_year = 2024
        db_session.commit()

        outcome = await delivery_service.handle(payload)

        assert outcome.status == DeliveryStatus.SKIPPED_ALREADY_NOTIFIED
        assert notification_service.messages == []

    @pytest.mark.asyncio
    async def test_sink_failure_leaves_person_due(
        self,
        person_service,
        failing_notification_service,
        idempotency_gate,
        db_session,
        due_person,
        payload,
    ):
        service = BirthdayDeliveryService(
            person_service, failing_notification_service, idempotency_gate
        )

        outcome = await service.handle(payload)

        assert outcome.status == DeliveryStatus.FAILED_DELIVERY
        assert outcome.retryable
        assert outcome.error == "HTTP 500"

        db_session.refresh(due_person)
        assert due_person.last_notification_year == 2023
        assert due_person.next_birthday_utc == datetime(2024, 6, 15, 13, 0)
        assert not idempotency_gate.is_marked(due_person.id, 2024)

        due = await person_service.get_persons_due_for_notification(SCAN_REFERENCE)
        assert [p.id for p in due] == [due_person.id]

    @pytest.mark.asyncio
    async def test_commit_failure_is_retryable_and_unmarked(
        self, delivery_service, person_service, idempotency_gate, due_person, payload
    ):
        person_service.mark_notification_sent = AsyncMock(
            side_effect=SQLAlchemyError("deadlock")
        )

        outcome = await delivery_service.handle(payload)

        assert outcome.status == DeliveryStatus.FAILED_COMMIT
        assert outcome.retryable
        assert not idempotency_gate.is_marked(due_person.id, 2024)

    @pytest.mark.asyncio
    async def test_marker_failure_after_commit_still_succeeds(
        self, person_service, notification_service, db_session, due_person, payload
    ):
        gate = Mock()
        gate.is_marked.return_value = False
        gate.mark.side_effect = RedisConnectionError("redis down")
        service = BirthdayDeliveryService(person_service, notification_service, gate)

        outcome = await service.handle(payload)

        assert outcome.status == DeliveryStatus.SENT
        db_session.refresh(due_person)
        assert due_person.last_notification_year == 2024

    @pytest.mark.asyncio
    async def test_gate_check_failure_falls_back_to_stored_year(
        self, person_service, notification_service, db_session, due_person, payload
    ):
        gate = Mock()
        gate.is_marked.side_effect = RedisConnectionError("redis down")
        gate.mark.side_effect = RedisConnectionError("redis down")
        service = BirthdayDeliveryService(person_service, notification_service, gate)

        first = await service.handle(payload)
        second = await service.handle(payload)

        assert first.status == DeliveryStatus.SENT
        assert second.status == DeliveryStatus.SKIPPED_ALREADY_NOTIFIED
        assert not second.retryable
        assert len(notification_service.messages) == 1
        db_session.refresh(due_person)
        assert due_person.last_notification_year == 2024

    @pytest.mark.asyncio
    async def test_redelivery_sends_once(
        self, delivery_service, notification_service, idempotency_gate, due_person, payload
    ):
        first = await delivery_service.handle(payload)
        second = await delivery_service.handle(payload)

        # Marker expired, the yearly field still holds
        idempotency_gate.clear(due_person.id, 2024)
        third = await delivery_service.handle(payload)

        assert first.status == DeliveryStatus.SENT
        assert second.status == DeliveryStatus.SKIPPED_DUPLICATE
        assert third.status == DeliveryStatus.SKIPPED_ALREADY_NOTIFIED
        assert len(notification_service.messages) == 1

    @pytest.mark.asyncio
    async def test_year_comes_from_scan_reference(
        self, delivery_service, idempotency_gate, make_person
    ):
        # Scanned on New Year's Eve, consumed after midnight UTC
        person = make_person(
            datetime(2024, 12, 31, 14, 0, tzinfo=timezone.utc), 2023, birthday="1990-12-31"
        )
        scan_reference = datetime(2024, 12, 31, 23, 59, 50, tzinfo=timezone.utc)
        payload = WorkItem.from_person(person, scan_reference).to_payload()

        outcome = await delivery_service.handle(payload)

        assert outcome.year == 2024
        assert idempotency_gate.is_marked(person.id, 2024)


class TestHandleBatch:
    @pytest.mark.asyncio
    async def test_only_retryable_failures_are_reported(
        self,
        person_service,
        failing_notification_service,
        idempotency_gate,
        payload,
    ):
        channel = InMemoryDispatchChannel()
        good_id = channel.send(QUEUE, payload)
        channel.send(QUEUE, "{not json")
        service = BirthdayDeliveryService(
            person_service, failing_notification_service, idempotency_gate
        )

        report = await service.handle_batch(channel.receive_batch(QUEUE))

        assert [o.status for o in report.outcomes] == [
            DeliveryStatus.FAILED_DELIVERY,
            DeliveryStatus.SKIPPED_MALFORMED,
        ]
        assert report.item_failures == [good_id]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_isolated(self, person_service, idempotency_gate, payload):
        channel = InMemoryDispatchChannel()
        channel.send(QUEUE, payload)
        channel.send(QUEUE, payload)
        sink = Mock()
        sink.send_notification = AsyncMock(
            side_effect=[RuntimeError("boom"), NotificationResult(success=True, status_code=200)]
        )
        service = BirthdayDeliveryService(person_service, sink, idempotency_gate)

        report = await service.handle_batch(channel.receive_batch(QUEUE))

        assert report.outcomes[0].status == DeliveryStatus.FAILED_DELIVERY
        assert report.outcomes[1].status == DeliveryStatus.SENT
        assert len(report.item_failures) == 1
