from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from app.context import AppContext, get_context
from app.errors import VerificationError
from app.logging_config import get_logger
from app.schemas.webhook import WHATSAPP_OBJECT, WebhookPayload
from app.services.ingestion_service import extract_inbound_messages, verify_subscription

logger = get_logger("webhook")

router = APIRouter()


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    ctx: AppContext = Depends(get_context),
):
    """WhatsApp subscription handshake."""
    try:
        echoed = verify_subscription(mode, token, challenge, ctx.settings.webhook_verify_token)
    except VerificationError:
        logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
        return PlainTextResponse("Forbidden", status_code=403)

    logger.info("Webhook verified successfully")
    return PlainTextResponse(echoed, status_code=200)


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(request: Request, ctx: AppContext = Depends(get_context)):
    """
    Accept a WhatsApp event delivery.

    Every text-bearing message is handed to the dispatcher as its own task;
    the response goes back before any of them is processed.
    """
    try:
        payload = WebhookPayload.model_validate(await request.json())
    except ValueError as e:
        logger.error(f"Webhook payload rejected: {e}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    if payload.object != WHATSAPP_OBJECT:
        logger.warning("Webhook for unexpected object", extra={"context": {"object": payload.object}})
        return PlainTextResponse("Not Found", status_code=404)

    messages = extract_inbound_messages(payload)
    for message in messages:
        ctx.dispatcher.submit(message)

    logger.info("Webhook accepted", extra={"context": {"messages": len(messages)}})
    return PlainTextResponse("OK", status_code=200)
