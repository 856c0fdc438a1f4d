from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    phone_number: str = Field(alias="phoneNumber")
    message: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ApiResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class ConversationOut(BaseModel):
    id: UUID
    phone_number: str
    user_name: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, conversation) -> "ConversationOut":
        return cls(
            id=conversation.id,
            phone_number=conversation.phone_number,
            user_name=conversation.user_name,
            metadata=conversation.conversation_metadata or {},
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class MessageOut(BaseModel):
    id: UUID
    conversation_id: UUID
    message_id: Optional[str] = None
    phone_number: str
    message_type: str
    content: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    direction: str
    status: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)

    @classmethod
    def from_model(cls, message) -> "MessageOut":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            message_id=message.message_id,
            phone_number=message.phone_number,
            message_type=message.message_type,
            content=message.content,
            media_url=message.media_url,
            media_type=message.media_type,
            direction=message.direction,
            status=message.status,
            timestamp=message.timestamp,
            metadata=message.message_metadata or {},
        )
