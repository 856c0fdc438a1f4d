from app.schemas.api import ApiResponse, ConversationOut, MessageOut, SendMessageRequest
from app.schemas.session import BotSessionState, ServiceKind, SessionPayload
from app.schemas.webhook import WebhookPayload

__all__ = [
    "ApiResponse",
    "ConversationOut",
    "MessageOut",
    "SendMessageRequest",
    "BotSessionState",
    "ServiceKind",
    "SessionPayload",
    "WebhookPayload",
]
