import uuid

from sqlalchemy import TIMESTAMP, Column, String, Uuid

from app.database import Base, JSONColumn
from app.models.conversation import _utcnow


class BotSession(Base):
    __tablename__ = "bot_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), nullable=False, unique=True)
    session_data = Column(JSONColumn, nullable=False, default=dict)
    current_step = Column(String(100), nullable=False, default="welcome")
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)
