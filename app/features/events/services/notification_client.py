"""
Client for the external notification service.

Message composition and transport live in that service; this module only
asks it to send a named template to one address with a set of variables.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.config import settings
from app.features.events.domain import DeliveryFailure, TemplateKind
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Request timeouts and retry configuration
MAX_RETRIES = 3
BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(slots=True)
class DeliveryResult:
    delivered: bool
    message_id: str | None = None
    skipped_reason: str | None = None


class NotificationSender(Protocol):
    async def send(
        self,
        template_kind: TemplateKind,
        address: str,
        variables: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> DeliveryResult: ...


class HttpNotificationSender:
    """
    Sends templated notifications over HTTP.

    Retries 429/5xx responses and transport errors with exponential backoff.
    Each request carries an Idempotency-Key so a retried request is not
    delivered twice by the service.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        backoff_factor: float = BACKOFF_FACTOR,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.backoff_factor = backoff_factor
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, idempotency_key: str | None) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _post_with_retry(self, url: str, **kwargs) -> httpx.Response:
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.post(url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Notification request retrying",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise DeliveryFailure(f"Notification service unreachable: {e}") from e
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Notification request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise DeliveryFailure("Notification retry loop exhausted")

    async def send(
        self,
        template_kind: TemplateKind,
        address: str,
        variables: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> DeliveryResult:
        """
        Ask the notification service to deliver one templated message.

        Raises:
            DeliveryFailure: the service rejected the request or could not be reached
        """
        payload = {
            "template": TemplateKind(template_kind).value,
            "to": address,
            "variables": variables,
        }
        response = await self._post_with_retry(
            f"{self.base_url}/v1/notifications",
            json=payload,
            headers=self._headers(idempotency_key),
        )

        if not response.is_success:
            logger.warning(
                "Notification request failed",
                template_kind=payload["template"],
                status_code=response.status_code,
            )
            raise DeliveryFailure(
                f"Notification service error (HTTP {response.status_code})",
                status_code=response.status_code,
                recoverable=response.status_code in RETRY_STATUS_CODES,
            )

        try:
            data = response.json() if response.text else {}
        except ValueError:
            data = {}

        if data.get("skipped"):
            return DeliveryResult(delivered=False, skipped_reason=data.get("reason") or "skipped")

        return DeliveryResult(delivered=True, message_id=data.get("id"))


def build_notification_sender() -> HttpNotificationSender:
    """
    Sender configured from settings.

    Raises:
        RuntimeError: NOTIFICATION_SERVICE_URL is not set
    """
    if not settings.NOTIFICATION_SERVICE_URL:
        raise RuntimeError("NOTIFICATION_SERVICE_URL is not configured")

    return HttpNotificationSender(
        base_url=settings.NOTIFICATION_SERVICE_URL,
        token=settings.NOTIFICATION_SERVICE_TOKEN,
        timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
    )
