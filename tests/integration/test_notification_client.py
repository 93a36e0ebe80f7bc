import json

import httpx
import pytest

from app.features.events.domain import DeliveryFailure, TemplateKind
from app.features.events.services.notification_client import (
    MAX_RETRIES,
    HttpNotificationSender,
    build_notification_sender,
)

URL = "https://notify.test/v1/notifications"
VARIABLES = {"event_name": "Board meeting", "name": "Ada"}


def _sender():
    return HttpNotificationSender(base_url="https://notify.test/", token="tok", backoff_factor=0)


@pytest.mark.asyncio
async def test_send_success(httpx_mock):
    sender = _sender()
    httpx_mock.add_response(method="POST", url=URL, json={"id": "msg-1"})

    result = await sender.send(
        TemplateKind.DAY_OF, "ada@example.com", VARIABLES, idempotency_key="key-1"
    )
    await sender.close()

    assert result.delivered is True
    assert result.message_id == "msg-1"

    request = httpx_mock.get_requests()[0]
    assert request.headers["Authorization"] == "Bearer tok"
    assert request.headers["Idempotency-Key"] == "key-1"
    assert json.loads(request.content) == {
        "template": "event_reminder_day_of",
        "to": "ada@example.com",
        "variables": VARIABLES,
    }


@pytest.mark.asyncio
async def test_send_retries_server_errors(httpx_mock):
    sender = _sender()
    httpx_mock.add_response(method="POST", url=URL, status_code=503)
    httpx_mock.add_response(method="POST", url=URL, json={"id": "msg-2"})

    result = await sender.send(TemplateKind.DAY_BEFORE, "ada@example.com", VARIABLES)
    await sender.close()

    assert result.delivered is True
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_send_gives_up_after_max_retries(httpx_mock):
    sender = _sender()
    for _ in range(MAX_RETRIES):
        httpx_mock.add_response(method="POST", url=URL, status_code=503)

    with pytest.raises(DeliveryFailure) as exc:
        await sender.send(TemplateKind.DAY_BEFORE, "ada@example.com", VARIABLES)
    await sender.close()

    assert exc.value.status_code == 503
    assert exc.value.recoverable is True


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(httpx_mock):
    sender = _sender()
    httpx_mock.add_response(method="POST", url=URL, status_code=400, json={"error": "bad address"})

    with pytest.raises(DeliveryFailure) as exc:
        await sender.send(TemplateKind.DAY_OF, "nobody", VARIABLES)
    await sender.close()

    assert exc.value.recoverable is False
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_transport_errors_become_delivery_failures(httpx_mock):
    sender = _sender()
    for _ in range(MAX_RETRIES):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

    with pytest.raises(DeliveryFailure):
        await sender.send(TemplateKind.DAY_OF, "ada@example.com", VARIABLES)
    await sender.close()


@pytest.mark.asyncio
async def test_skipped_template_is_not_delivered(httpx_mock):
    sender = _sender()
    httpx_mock.add_response(
        method="POST", url=URL, json={"skipped": True, "reason": "Template disabled"}
    )

    result = await sender.send(TemplateKind.DAY_OF, "ada@example.com", VARIABLES)
    await sender.close()

    assert result.delivered is False
    assert result.skipped_reason == "Template disabled"


def test_sender_requires_configured_url(monkeypatch):
    monkeypatch.setattr(
        "app.features.events.services.notification_client.settings.NOTIFICATION_SERVICE_URL", None
    )

    with pytest.raises(RuntimeError):
        build_notification_sender()
