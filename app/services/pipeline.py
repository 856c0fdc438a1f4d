from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import StoreError
from app.logging_config import MessageLogger, get_logger
from app.services.conversation_service import get_or_create_conversation
from app.services.dialog_engine import (
    InteractiveResponse,
    MediaResponse,
    ResponseDescriptor,
    StepResult,
    TextResponse,
    handle_step,
)
from app.services.message_service import INBOUND, OUTBOUND, build_outbound_message_id, save_message
from app.services.session_service import (
    cache_session,
    default_session_state,
    get_session,
    invalidate_session,
    save_session,
    session_expiry,
)
from app.services.whatsapp_service import WhatsAppService, ack_message_id

if TYPE_CHECKING:
    from app.context import AppContext

logger = get_logger("pipeline")

MSG_GENERIC_ERROR = "Sorry, I encountered an error. Please try again."


class PipelineStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineStatus
    conversation_id: Optional[UUID] = None
    next_step: Optional[str] = None
    error: Optional[str] = None


def dispatch_response(whatsapp: WhatsAppService, user_id: str, response: ResponseDescriptor) -> dict:
    """Send a response descriptor through the matching WhatsApp endpoint."""
    if isinstance(response, InteractiveResponse):
        return whatsapp.send_interactive(user_id, response.header, response.body, list(response.buttons))
    if isinstance(response, MediaResponse):
        return whatsapp.send_media(user_id, response.url, response.media_type, response.caption)
    if isinstance(response, TextResponse):
        return whatsapp.send_text(user_id, response.content)
    raise TypeError(f"Unsupported response descriptor: {type(response).__name__}")


def _outbound_metadata(result: StepResult, inbound_message_id: str, ack: Optional[dict]) -> dict:
    metadata = {"in_reply_to": inbound_message_id, "next_step": result.next_step.value}
    if isinstance(result.response, InteractiveResponse):
        metadata["buttons"] = list(result.response.buttons)
    platform_ack_id = ack_message_id(ack)
    if platform_ack_id:
        metadata["platform_ack_id"] = platform_ack_id
    return metadata


def _send_apology(whatsapp: WhatsAppService, user_id: str, log: MessageLogger) -> None:
    try:
        whatsapp.send_text(user_id, MSG_GENERIC_ERROR)
    except Exception as e:
        log.warning(f"Apology message not delivered: {e}")


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        raise StoreError(operation, str(e)) from e


def process_inbound_message(
    ctx: "AppContext",
    user_id: str,
    text: str,
    platform_message_id: str,
    display_name: Optional[str] = None,
) -> PipelineResult:
    """
    Run one inbound message through the bot and never raise.

    conversation -> save inbound -> session -> dialog step -> send ->
    save outbound -> save session. Any failure rolls back the open
    transaction, is logged, and answers the user with a generic apology.
    """
    log = MessageLogger(logger, user_id, platform_message_id)
    ttl_minutes = ctx.settings.session_ttl_minutes
    db = ctx.session_factory()
    conversation_id: Optional[UUID] = None

    try:
        log.stage = "conversation"
        conversation = get_or_create_conversation(db, user_id, display_name)
        conversation_id = conversation.id

        log.stage = "save_inbound"
        inbound = save_message(
            db,
            conversation.id,
            platform_message_id,
            user_id,
            "text",
            content=text,
            direction=INBOUND,
        )
        _commit(db, "commit_inbound")

        if inbound is None and not ctx.settings.process_duplicate_deliveries:
            log.info("Duplicate delivery skipped")
            return PipelineResult(PipelineStatus.DUPLICATE, conversation_id)

        log.stage = "load_session"
        session = get_session(db, user_id, cache=ctx.cache) or default_session_state(user_id, ttl_minutes)

        log.stage = "dialog"
        result = handle_step(session, text, user_id, ctx.generation)

        log.stage = "send"
        ack = dispatch_response(ctx.whatsapp, user_id, result.response)

        log.stage = "save_outbound"
        response = result.response
        save_message(
            db,
            conversation.id,
            build_outbound_message_id(),
            user_id,
            response.kind,
            content=response.record_content(),
            media_url=response.url if isinstance(response, MediaResponse) else None,
            media_type=response.media_type if isinstance(response, MediaResponse) else None,
            direction=OUTBOUND,
            message_metadata=_outbound_metadata(result, platform_message_id, ack),
        )

        log.stage = "save_session"
        state = save_session(db, user_id, result.payload, result.next_step.value, session_expiry(ttl_minutes))
        # Cache must never hold a step older than the row.
        invalidate_session(ctx.cache, user_id)
        _commit(db, "commit_session")
        cache_session(ctx.cache, state)

        log.info(
            "Message processed",
            context={"step": session.step, "next_step": result.next_step.value, "response": response.kind},
        )
        return PipelineResult(PipelineStatus.PROCESSED, conversation_id, result.next_step.value)

    except Exception as e:
        db.rollback()
        log.error(f"Message processing failed: {e}", exc_info=True)
        _send_apology(ctx.whatsapp, user_id, log)
        return PipelineResult(PipelineStatus.FAILED, conversation_id, error=str(e))

    finally:
        db.close()
