"""Dispatcher that POSTs notifications to an HTTP endpoint."""

import logging
from collections.abc import Sequence

import httpx
from pydantic import SecretStr

from beacon.notifications.base import DeliveryResult

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Delivers notifications as JSON to a webhook.

    Payload: ``{"channel_id": ..., "text": ..., "highlight_ids": [...]}``.
    Non-2xx responses are reported as failed deliveries; transport errors
    propagate to the caller.
    """

    def __init__(
        self,
        url: str,
        *,
        token: SecretStr | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(
        self,
        channel_id: str,
        text: str,
        highlight_ids: Sequence[str] = (),
    ) -> DeliveryResult:
        headers = {}
        if self._token is not None:
            headers["Authorization"] = f"Bearer {self._token.get_secret_value()}"

        client = await self._get_client()
        response = await client.post(
            self._url,
            json={
                "channel_id": channel_id,
                "text": text,
                "highlight_ids": list(highlight_ids),
            },
            headers=headers,
        )
        if response.is_success:
            message_id = None
            if response.headers.get("content-type", "").startswith("application/json"):
                body = response.json()
                if isinstance(body, dict) and body.get("id") is not None:
                    message_id = str(body["id"])
            return DeliveryResult.ok(message_id=message_id)

        logger.warning(
            "webhook_delivery_rejected",
            extra={
                "messaging.channel_id": channel_id,
                "http.status_code": response.status_code,
            },
        )
        return DeliveryResult.failed(f"HTTP {response.status_code}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
