from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StoreError
from app.logging_config import get_logger
from app.models import Conversation

logger = get_logger("conversation_service")


def get_or_create_conversation(db: Session, user_id: str, display_name: Optional[str] = None) -> Conversation:
    """Return the latest conversation for the user, creating one on first contact."""
    try:
        conversation = (
            db.query(Conversation)
            .filter(Conversation.phone_number == user_id)
            .order_by(Conversation.created_at.desc())
            .first()
        )

        if not conversation:
            now = datetime.now(timezone.utc)
            conversation = Conversation(
                phone_number=user_id,
                user_name=display_name,
                conversation_metadata={},
                created_at=now,
                updated_at=now,
            )
            db.add(conversation)
            db.flush()
            logger.info("Conversation created", extra={"context": {"user_id": user_id}})
        elif display_name and not conversation.user_name:
            conversation.user_name = display_name
            db.flush()

        return conversation
    except SQLAlchemyError as e:
        logger.error(f"Conversation lookup failed for {user_id}: {e}")
        raise StoreError("get_or_create_conversation", str(e)) from e


def list_conversations(db: Session, limit: int = 100) -> list[Conversation]:
    """Most recently active conversations first."""
    try:
        return db.query(Conversation).order_by(Conversation.updated_at.desc()).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error(f"Listing conversations failed: {e}")
        raise StoreError("list_conversations", str(e)) from e
