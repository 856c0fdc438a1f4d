"""Management endpoints for manual sends and conversation lookups."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import AppContext, get_context
from app.database import get_db
from app.errors import DeliveryError, StoreError
from app.logging_config import get_logger
from app.schemas.api import ApiResponse, ConversationOut, MessageOut, SendMessageRequest
from app.services.conversation_service import list_conversations
from app.services.message_service import get_history

logger = get_logger("api")

router = APIRouter(prefix="/api")


def _error_response(error: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content=ApiResponse(success=False, error=str(error)).model_dump())


@router.post("/send-message", response_model=ApiResponse)
def send_message(request: SendMessageRequest, ctx: AppContext = Depends(get_context)):
    """Send a text message to a user outside the dialog flow."""
    try:
        ack = ctx.whatsapp.send_text(request.phone_number, request.message)
    except DeliveryError as e:
        logger.warning(f"Manual send failed: {e}")
        return _error_response(e)
    return ApiResponse(success=True, data=ack)


@router.get("/conversations", response_model=ApiResponse)
def get_conversations(db: Session = Depends(get_db)):
    try:
        conversations = list_conversations(db, limit=100)
    except StoreError as e:
        return _error_response(e)
    return ApiResponse(success=True, data=[ConversationOut.from_model(c) for c in conversations])


@router.get("/conversations/{phone_number}/history", response_model=ApiResponse)
def get_conversation_history(
    phone_number: str,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        history = get_history(db, phone_number, limit)
    except StoreError as e:
        return _error_response(e)
    return ApiResponse(success=True, data=[MessageOut.from_model(m) for m in history])
