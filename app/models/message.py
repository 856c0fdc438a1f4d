import uuid

from sqlalchemy import TIMESTAMP, Column, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, JSONColumn
from app.models.conversation import _utcnow


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False)
    message_id = Column(String(100), unique=True)  # platform id; out_* for outbound
    phone_number = Column(String(20), nullable=False)
    message_type = Column(String(20), nullable=False)  # text, media, interactive
    content = Column(Text)
    media_url = Column(String(500))
    media_type = Column(String(50))  # image, video, audio, document
    direction = Column(String(10), nullable=False)  # inbound, outbound
    status = Column(String(20), nullable=False, default="sent")
    timestamp = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)
    message_metadata = Column("metadata", JSONColumn, nullable=False, default=dict)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_conversation", "conversation_id"),
        Index("idx_messages_phone", "phone_number"),
    )
