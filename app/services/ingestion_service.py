from dataclasses import dataclass
from typing import Optional

from app.errors import VerificationError
from app.schemas.webhook import WhatsAppChangeValue, WhatsAppMessage, WebhookPayload

SUBSCRIBE_MODE = "subscribe"


@dataclass(frozen=True)
class InboundMessage:
    user_id: str
    text: str
    message_id: str
    display_name: Optional[str] = None


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> str:
    """Return the challenge to echo back, or raise VerificationError."""
    if mode != SUBSCRIBE_MODE or not expected_token or token != expected_token:
        raise VerificationError("Webhook verification failed")
    return challenge or ""


def message_text(message: WhatsAppMessage) -> Optional[str]:
    """Text typed by the user, or the title of the reply button / list row they tapped."""
    if message.text and message.text.body:
        return message.text.body
    if message.interactive:
        for reply in (message.interactive.button_reply, message.interactive.list_reply):
            if reply and reply.title:
                return reply.title
    if message.button and message.button.text:
        return message.button.text
    return None


def _display_name(value: WhatsAppChangeValue, user_id: str) -> Optional[str]:
    contacts = value.contacts
    if not contacts:
        return None
    contact = next((c for c in contacts if c.wa_id == user_id), contacts[0])
    return contact.profile.name if contact.profile else None


def extract_inbound_messages(payload: WebhookPayload) -> list[InboundMessage]:
    """Flatten entry[].changes[].value.messages[] into one item per text-bearing message."""
    inbound: list[InboundMessage] = []
    for entry in payload.entry:
        for change in entry.changes:
            if change.field != "messages":
                continue
            for message in change.value.messages:
                text = message_text(message)
                if not text:
                    continue
                inbound.append(
                    InboundMessage(
                        user_id=message.from_user,
                        text=text,
                        message_id=message.id,
                        display_name=_display_name(change.value, message.from_user),
                    )
                )
    return inbound
