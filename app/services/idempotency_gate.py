from typing import Optional

import redis

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Shared Redis client for the idempotency cache."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            socket_connect_timeout=5,
            socket_timeout=5,
            decode_responses=True,
        )
    return _redis_client


class IdempotencyGate:
    """
    Short-lived (person, year) markers that suppress redeliveries inside one
    processing window.

    This is a best-effort layer only. The yearly guarantee lives on the
    person record (last_notification_year); markers expire after
    IDEMPOTENCY_TTL_SECONDS so a crashed attempt becomes retryable again.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        ttl_seconds: Optional[int] = None,
        key_prefix: Optional[str] = None,
    ):
        self.client = client if client is not None else get_redis_client()
        self.ttl_seconds = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS
        self.key_prefix = key_prefix or settings.IDEMPOTENCY_KEY_PREFIX

    def build_key(self, person_id: str, year: int) -> str:
        return f"{self.key_prefix}:{person_id}:{year}"

    def is_marked(self, person_id: str, year: int) -> bool:
        """True when this (person, year) was handled within the TTL window."""
        return bool(self.client.get(self.build_key(person_id, year)))

    def mark(self, person_id: str, year: int, ttl_seconds: Optional[int] = None) -> bool:
        """
        Set the marker with its TTL (SET NX EX).

        Returns False when the marker already existed, which means a
        concurrent worker got there first.
        """
        created = self.client.set(
            self.build_key(person_id, year),
            1,
            ex=ttl_seconds or self.ttl_seconds,
            nx=True,
        )
        return bool(created)

    def clear(self, person_id: str, year: int) -> None:
        self.client.delete(self.build_key(person_id, year))


def get_idempotency_gate() -> IdempotencyGate:
    """Dependency to get IdempotencyGate instance"""
    return IdempotencyGate()
