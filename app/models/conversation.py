import uuid
from datetime import datetime, timezone

from sqlalchemy import TIMESTAMP, Column, Index, String, Uuid
from sqlalchemy.orm import relationship

from app.database import Base, JSONColumn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), nullable=False)
    user_name = Column(String(100))
    conversation_metadata = Column("metadata", JSONColumn, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)

    messages = relationship("Message", back_populates="conversation")

    __table_args__ = (Index("idx_conversations_phone", "phone_number"),)
