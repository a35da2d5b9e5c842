import json

import httpx
import pytest

from app.services.notification_service import (
    NotificationService,
    compose_birthday_message,
)

WEBHOOK_URL = "https://hooks.example.test/birthdays"


def _service(handler) -> NotificationService:
    return NotificationService(
        webhook_url=WEBHOOK_URL,
        timeout_seconds=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestComposeMessage:
    def test_full_name(self):
        assert compose_birthday_message("John", "Doe") == "Hey, John Doe it's your birthday"

    def test_missing_last_name(self):
        assert compose_birthday_message("Cher", "") == "Hey, Cher it's your birthday"


class TestSendNotification:
    @pytest.mark.asyncio
    async def test_success(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        result = await _service(handler).send_notification("Hey, John Doe it's your birthday")

        assert result.success
        assert result.status_code == 200
        assert received == [(WEBHOOK_URL, {"message": "Hey, John Doe it's your birthday"})]

    @pytest.mark.asyncio
    async def test_server_error_is_a_failed_result(self):
        result = await _service(lambda request: httpx.Response(500)).send_notification("hi")

        assert not result.success
        assert result.status_code == 500
        assert result.error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _service(handler).send_notification("hi")

        assert not result.success
        assert result.status_code is None
        assert result.error.startswith("timeout")

    @pytest.mark.asyncio
    async def test_connection_error_is_a_failed_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _service(handler).send_notification("hi")

        assert not result.success
        assert "connection refused" in result.error
