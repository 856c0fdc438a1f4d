from typing import Optional, Sequence

import httpx

from app.errors import DeliveryError
from app.logging_config import get_logger

logger = get_logger("whatsapp_service")


class WhatsAppService:
    """Service for sending messages through the WhatsApp Cloud API."""

    BASE_URL = "https://graph.facebook.com"

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v18.0",
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout
        self.messages_url = f"{(base_url or self.BASE_URL).rstrip('/')}/{api_version}/{phone_number_id}/messages"

    def _make_request(self, payload: dict) -> dict:
        """POST one message payload. Single attempt; raises DeliveryError on any failure."""
        if not self.access_token or not self.phone_number_id:
            raise DeliveryError("WhatsApp credentials are not configured")

        body = {"messaging_product": "whatsapp", **payload}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self.messages_url,
                    headers={
                        "Authorization": f"Bearer {self.access_token}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp API error: {e}")
            raise DeliveryError(f"WhatsApp request failed: {e}") from e

        if response.status_code >= 300:
            logger.error(f"WhatsApp send rejected: status={response.status_code}, body={response.text[:200]}")
            raise DeliveryError(
                "WhatsApp API rejected the message",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def send_text(self, to: str, text: str) -> dict:
        """Send plain text message."""
        return self._make_request({"to": to, "type": "text", "text": {"body": text}})

    def send_media(self, to: str, media_url: str, media_type: str, caption: Optional[str] = None) -> dict:
        """Send image/video/audio/document by link."""
        media = {"link": media_url}
        if caption:
            media["caption"] = caption
        return self._make_request({"to": to, "type": media_type, media_type: media})

    def send_interactive(self, to: str, header: str, body: str, buttons: Sequence[str]) -> dict:
        """Send reply-button message; button ids are btn_<position>."""
        return self._make_request(
            {
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "header": {"type": "text", "text": header},
                    "body": {"text": body},
                    "action": build_reply_buttons(buttons),
                },
            }
        )


def build_reply_buttons(labels: Sequence[str]) -> dict:
    """Build the action block of a reply-button message, keeping label order."""
    return {
        "buttons": [
            {"type": "reply", "reply": {"id": f"btn_{index}", "title": label}} for index, label in enumerate(labels)
        ]
    }


def ack_message_id(ack: Optional[dict]) -> Optional[str]:
    """Extract the wamid WhatsApp assigned to a sent message."""
    if not ack:
        return None
    messages = ack.get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None
