"""
At-least-once hand-off between the scanner and the delivery consumer.

Two implementations share one interface:

- CeleryDispatchChannel publishes to a Redis-backed Celery queue; the worker
  acks late, so a crashed worker's messages are redelivered.
- InMemoryDispatchChannel keeps messages in process and exposes the receive
  side explicitly (batch receive, per-message ack/fail, dead-lettering). It
  backs local runs and tests.

Neither assumes exactly-once delivery or ordering.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from app.config.settings import settings
from app.utils.errors import DispatchError
from app.utils.logging import get_logger

logger = get_logger()

DELIVERY_TASK_NAME = (
    "app.tasks.background.birthday_notification_sender.send_birthday_notification_task"
)


@dataclass
class ChannelMessage:
    message_id: str
    destination: str
    body: str
    receive_count: int = 0


class DispatchChannel(ABC):
    """Send side of the channel; the receive side is implementation-specific."""

    @abstractmethod
    def send(self, destination: str, payload: str) -> str:
        """Publish one payload and return the channel's message ID."""


class CeleryDispatchChannel(DispatchChannel):
    """Publishes payloads as delivery tasks on the named Celery queue"""

    def __init__(self, celery_app=None, task_name: str = DELIVERY_TASK_NAME):
        if celery_app is None:
            from app.celery import celery as celery_app
        self.celery_app = celery_app
        self.task_name = task_name

    def send(self, destination: str, payload: str) -> str:
        try:
            result = self.celery_app.send_task(
                self.task_name, args=[payload], queue=destination
            )
        except Exception as e:
            raise DispatchError(
                f"Failed to publish to {destination}: {str(e)}"
            ) from e
        return str(result.id)


class InMemoryDispatchChannel(DispatchChannel):
    """
    In-process queue with visibility semantics.

    Received messages stay in flight until acked; a failed message goes back
    to the queue, and after max_receive_count receives it moves to the
    dead-letter list instead.
    """

    def __init__(self, max_receive_count: Optional[int] = None):
        self.max_receive_count = max_receive_count or (settings.DELIVERY_MAX_RETRIES + 1)
        self._queues: Dict[str, Deque[ChannelMessage]] = {}
        self._in_flight: Dict[str, ChannelMessage] = {}
        self.dead_letters: List[ChannelMessage] = []
        self._lock = threading.Lock()

    def send(self, destination: str, payload: str) -> str:
        message = ChannelMessage(
            message_id=str(uuid.uuid4()), destination=destination, body=payload
        )
        with self._lock:
            self._queues.setdefault(destination, deque()).append(message)
        return message.message_id

    def receive_batch(self, destination: str, max_messages: int = 10) -> List[ChannelMessage]:
        batch: List[ChannelMessage] = []
        with self._lock:
            queue = self._queues.get(destination)
            while queue and len(batch) < max_messages:
                message = queue.popleft()
                message.receive_count += 1
                self._in_flight[message.message_id] = message
                batch.append(message)
        return batch

    def ack(self, message_id: str) -> None:
        with self._lock:
            self._in_flight.pop(message_id, None)

    def fail(self, message_id: str) -> None:
        with self._lock:
            message = self._in_flight.pop(message_id, None)
            if message is None:
                return
            if message.receive_count >= self.max_receive_count:
                self.dead_letters.append(message)
                logger.error(
                    "Message moved to dead-letter list",
                    message_id=message_id,
                    destination=message.destination,
                    receive_count=message.receive_count,
                )
                return
            self._queues.setdefault(message.destination, deque()).append(message)

    def redeliver(self, message: ChannelMessage) -> None:
        """Put a copy of an already-delivered message back, simulating a duplicate."""
        duplicate = ChannelMessage(
            message_id=message.message_id,
            destination=message.destination,
            body=message.body,
            receive_count=message.receive_count,
        )
        with self._lock:
            self._queues.setdefault(message.destination, deque()).append(duplicate)

    def pending_count(self, destination: str) -> int:
        with self._lock:
            return len(self._queues.get(destination, ()))

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)


def get_dispatch_channel() -> DispatchChannel:
    """Dependency to get the production dispatch channel"""
    return CeleryDispatchChannel()
