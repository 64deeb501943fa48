from __future__ import annotations

import httpx

from app.core.config import settings
from app.services.integrations import MessagingClientError


class WhatsAppClient:
    """WhatsApp Cloud API sender, authenticated with the store's bearer token."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self._http = http_client or httpx.AsyncClient(timeout=settings.INTEGRATION_HTTP_TIMEOUT_SECONDS)
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def messages_url(self) -> str:
        base = settings.WHATSAPP_API_BASE_URL.rstrip("/")
        return f"{base}/{settings.WHATSAPP_API_VERSION}/{self.phone_number_id}/messages"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def send_text(self, to: str, body: str, *, preview_url: bool = True) -> str | None:
        """Send a text message; returns the WhatsApp message id when the API provides one."""
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": preview_url, "body": body},
        }
        try:
            response = await self._http.post(self.messages_url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MessagingClientError(f"WhatsApp error {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise MessagingClientError(f"WhatsApp connection error: {exc}") from exc

        try:
            messages = response.json().get("messages") or []
        except ValueError:
            return None
        return messages[0].get("id") if messages else None
