import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import dialect_insert
from app.errors import StoreError
from app.logging_config import get_logger
from app.models import Conversation, Message

logger = get_logger("message_service")

INBOUND = "inbound"
OUTBOUND = "outbound"


def build_outbound_message_id(now: Optional[datetime] = None) -> str:
    """Synthesize a unique id for an outbound message (WhatsApp assigns its own only after sending)."""
    now = now or datetime.now(timezone.utc)
    return f"out_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"


def save_message(
    db: Session,
    conversation_id: UUID,
    platform_message_id: Optional[str],
    user_id: str,
    message_type: str,
    content: Optional[str] = None,
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
    direction: str = INBOUND,
    message_metadata: Optional[dict] = None,
) -> Optional[Message]:
    """
    Insert a message, ignoring a duplicate platform message id.

    Returns the stored Message, or None when a row with the same
    platform_message_id already existed (the existing row is left untouched).
    """
    now = datetime.now(timezone.utc)
    table = Message.__table__

    stmt = (
        dialect_insert(db, table)
        .values(
            {
                "id": uuid.uuid4(),
                "conversation_id": conversation_id,
                "message_id": platform_message_id,
                "phone_number": user_id,
                "message_type": message_type,
                "content": content,
                "media_url": media_url,
                "media_type": media_type,
                "direction": direction,
                "status": "received" if direction == INBOUND else "sent",
                "timestamp": now,
                # Core keys by column name; the ORM attribute is message_metadata.
                "metadata": message_metadata or {},
            }
        )
        .on_conflict_do_nothing(index_elements=[table.c.message_id])
        .returning(table.c.id)
    )

    try:
        inserted_id = db.execute(stmt).scalar_one_or_none()
        if inserted_id is None:
            logger.info(
                "Duplicate message ignored",
                extra={"context": {"message_id": platform_message_id, "user_id": user_id}},
            )
            return None

        conversation = db.get(Conversation, conversation_id)
        if conversation is not None:
            conversation.updated_at = now
        db.flush()
        return db.get(Message, inserted_id)
    except SQLAlchemyError as e:
        logger.error(f"Saving {direction} message failed for {user_id}: {e}")
        raise StoreError("save_message", str(e)) from e


def get_history(db: Session, user_id: str, limit: int = 50) -> list[Message]:
    """Return the `limit` most recent messages for the user, oldest first."""
    try:
        rows = (
            db.query(Message)
            .join(Conversation, Message.conversation_id == Conversation.id)
            .filter(Conversation.phone_number == user_id)
            .order_by(Message.timestamp.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Loading history failed for {user_id}: {e}")
        raise StoreError("get_history", str(e)) from e

    return list(reversed(rows))
