"""
fcm.py — Firebase Cloud Messaging push provider.

Delivery mechanism:
    • Send:       POST {FCM_BASE_URL}/projects/{project}/messages:send
                  body {"message": PushMessage.to_fcm()}
    • Subscribe:  POST {FCM_IID_URL}:batchAdd
                  body {"to": "/topics/<topic>", "registration_tokens": [token]}

Authentication is an OAuth2 bearer token supplied through settings
(``FCM_ACCESS_TOKEN``); minting and refreshing it is left to the
deployment. Any non-2xx response or transport error surfaces as
``PushDeliveryError`` and the dispatcher records it as a failed topic.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from crowdwatch.app.alerts.channels.push import PushBroadcaster, PushMessage
from crowdwatch.app.core.errors import PushDeliveryError

logger = logging.getLogger(__name__)


class FcmPushBroadcaster(PushBroadcaster):
    """
    Sends topic messages through the FCM HTTP v1 API.

    Usage:
        push = FcmPushBroadcaster(project_id="my-app", access_token=token)
        message_id = await push.send(PushMessage(topic="security", ...))
        await push.close()
    """

    name = "fcm"

    def __init__(
        self,
        project_id: Optional[str],
        access_token: Optional[str],
        *,
        base_url: str = "https://fcm.googleapis.com/v1",
        iid_url: str = "https://iid.googleapis.com/iid/v1",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.project_id = project_id
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.iid_url = iid_url.rstrip("/")
        self.timeout = timeout
        self._http_client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.project_id and self.access_token)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def send(self, message: PushMessage) -> str:
        if not self.is_configured:
            raise PushDeliveryError(message.topic, "FCM credentials are not configured")

        url = f"{self.base_url}/projects/{self.project_id}/messages:send"
        try:
            client = await self._get_client()
            response = await client.post(
                url, json={"message": message.to_fcm()}, headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PushDeliveryError(
                message.topic,
                f"HTTP {e.response.status_code}",
                response=e.response.text[:200],
            ) from e
        except httpx.HTTPError as e:
            raise PushDeliveryError(message.topic, str(e) or type(e).__name__) from e

        message_id = response.json().get("name", "")
        logger.debug("FCM accepted %s for topic %s", message_id, message.topic)
        return message_id

    async def subscribe(self, token: str, topic: str) -> None:
        if not self.is_configured:
            raise PushDeliveryError(topic, "FCM credentials are not configured")

        headers = {**self._headers(), "access_token_auth": "true"}
        body = {"to": f"/topics/{topic}", "registration_tokens": [token]}
        try:
            client = await self._get_client()
            response = await client.post(f"{self.iid_url}:batchAdd", json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PushDeliveryError(topic, f"subscribe HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise PushDeliveryError(topic, f"subscribe failed: {e}") from e

        # batchAdd reports per-token errors in a 200 body
        results = response.json().get("results") or [{}]
        error = results[0].get("error") if isinstance(results[0], dict) else None
        if error:
            raise PushDeliveryError(topic, f"subscribe rejected: {error}")
