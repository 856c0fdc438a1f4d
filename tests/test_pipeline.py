import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from app.errors import DeliveryError, StoreError
from app.models import BotSession, Conversation, Message
from app.schemas.session import ServiceKind, SessionPayload
from app.services.dialog_engine import (
    MENU_BUTTONS,
    MSG_IMAGE_PROMPT,
    MSG_INVALID_OPTION,
    InteractiveResponse,
    MediaResponse,
    TextResponse,
)
from app.services.generation_service import GenerationResult
from app.services.pipeline import MSG_GENERIC_ERROR, PipelineStatus, dispatch_response, process_inbound_message
from app.services.session_service import SESSION_CACHE_PREFIX, save_session

USER = "15550001111"


def _seed_session(session_factory, step: str, payload: SessionPayload, expires_at: datetime) -> None:
    db = session_factory()
    try:
        save_session(db, USER, payload, step, expires_at)
        db.commit()
    finally:
        db.close()


def _load(session_factory, model, **filters):
    db = session_factory()
    try:
        return db.query(model).filter_by(**filters).all()
    finally:
        db.close()


class TestScenarios:
    def test_first_contact_shows_menu(self, ctx, session_factory, whatsapp):
        result = process_inbound_message(ctx, USER, "hi", "wamid.1", "Alice")

        assert result.status == PipelineStatus.PROCESSED
        assert result.next_step == "menu_selection"
        whatsapp.send_interactive.assert_called_once_with(USER, "Welcome! 👋", "What would you like to do today?", list(MENU_BUTTONS))

        conversations = _load(session_factory, Conversation, phone_number=USER)
        assert len(conversations) == 1
        assert conversations[0].user_name == "Alice"

        (session,) = _load(session_factory, BotSession, phone_number=USER)
        assert session.current_step == "menu_selection"

        inbound = _load(session_factory, Message, direction="inbound")
        outbound = _load(session_factory, Message, direction="outbound")
        assert [m.message_id for m in inbound] == ["wamid.1"]
        assert len(outbound) == 1
        assert outbound[0].message_type == "interactive"
        assert outbound[0].message_id.startswith("out_")
        assert outbound[0].message_metadata["platform_ack_id"] == "wamid.ACK"
        assert outbound[0].message_metadata["in_reply_to"] == "wamid.1"

    def test_menu_choice_moves_to_image_input(self, ctx, session_factory, whatsapp):
        _seed_session(session_factory, "menu_selection", SessionPayload(), datetime.now(timezone.utc) + timedelta(minutes=5))

        result = process_inbound_message(ctx, USER, "I want an image", "wamid.2")

        assert result.next_step == "image_input"
        whatsapp.send_text.assert_called_once_with(USER, MSG_IMAGE_PROMPT)
        (session,) = _load(session_factory, BotSession, phone_number=USER)
        assert session.session_data == {"service": "image"}

    def test_image_prompt_generates_media(self, ctx, session_factory, whatsapp, generation):
        _seed_session(
            session_factory,
            "image_input",
            SessionPayload(service=ServiceKind.IMAGE),
            datetime.now(timezone.utc) + timedelta(minutes=5),
        )
        generation.invoke.return_value = GenerationResult(kind=ServiceKind.IMAGE, value="https://img.test/bike.png")

        result = process_inbound_message(ctx, USER, "a red bicycle", "wamid.3")

        assert result.next_step == "welcome"
        generation.invoke.assert_called_once_with(ServiceKind.IMAGE, {"prompt": "a red bicycle", "user": USER})
        args = whatsapp.send_media.call_args[0]
        assert args[:3] == (USER, "https://img.test/bike.png", "image")
        assert "a red bicycle" in args[3]

        (session,) = _load(session_factory, BotSession, phone_number=USER)
        assert session.current_step == "welcome"
        assert session.session_data == {}
        (outbound,) = _load(session_factory, Message, direction="outbound")
        assert outbound.media_url == "https://img.test/bike.png"
        assert outbound.media_type == "image"

    def test_expired_session_restarts_at_welcome(self, ctx, session_factory, whatsapp, generation):
        _seed_session(
            session_factory,
            "image_input",
            SessionPayload(service=ServiceKind.IMAGE),
            datetime.now(timezone.utc) - timedelta(minutes=1),
        )

        result = process_inbound_message(ctx, USER, "a red bicycle", "wamid.4")

        assert result.next_step == "menu_selection"
        generation.invoke.assert_not_called()
        whatsapp.send_interactive.assert_called_once()

    def test_session_expiry_is_extended(self, ctx, session_factory):
        before = datetime.now(timezone.utc)

        process_inbound_message(ctx, USER, "hi", "wamid.5")

        (session,) = _load(session_factory, BotSession, phone_number=USER)
        expires_at = session.expires_at.replace(tzinfo=timezone.utc)
        assert before + timedelta(minutes=29) < expires_at <= datetime.now(timezone.utc) + timedelta(minutes=30)


class TestDuplicateDelivery:
    def test_duplicate_is_skipped_by_default(self, ctx, session_factory, whatsapp):
        first = process_inbound_message(ctx, USER, "hi", "wamid.dup")
        second = process_inbound_message(ctx, USER, "hi", "wamid.dup")

        assert first.status == PipelineStatus.PROCESSED
        assert second.status == PipelineStatus.DUPLICATE
        assert len(_load(session_factory, Message, message_id="wamid.dup")) == 1
        assert len(_load(session_factory, Message, direction="outbound")) == 1
        whatsapp.send_interactive.assert_called_once()
        whatsapp.send_text.assert_not_called()

    def test_duplicate_reprocessed_when_enabled(self, ctx, session_factory, whatsapp):
        ctx.settings = ctx.settings.model_copy(update={"process_duplicate_deliveries": True})

        first = process_inbound_message(ctx, USER, "hi", "wamid.dup")
        second = process_inbound_message(ctx, USER, "hi", "wamid.dup")

        assert first.status == second.status == PipelineStatus.PROCESSED
        assert len(_load(session_factory, Message, message_id="wamid.dup")) == 1
        assert len(_load(session_factory, Message, direction="outbound")) == 2
        whatsapp.send_interactive.assert_called_once()
        whatsapp.send_text.assert_called_once_with(USER, MSG_INVALID_OPTION)


class TestFailureContainment:
    def test_delivery_failure_sends_apology(self, ctx, session_factory, whatsapp):
        whatsapp.send_interactive.side_effect = DeliveryError("rate limited", status_code=429)

        result = process_inbound_message(ctx, USER, "hi", "wamid.6")

        assert result.status == PipelineStatus.FAILED
        whatsapp.send_text.assert_called_once_with(USER, MSG_GENERIC_ERROR)
        assert len(_load(session_factory, Message, direction="inbound")) == 1
        assert _load(session_factory, Message, direction="outbound") == []
        assert _load(session_factory, BotSession) == []

    def test_apology_failure_is_swallowed(self, ctx, whatsapp):
        whatsapp.send_interactive.side_effect = DeliveryError("down")
        whatsapp.send_text.side_effect = DeliveryError("still down")

        result = process_inbound_message(ctx, USER, "hi", "wamid.7")

        assert result.status == PipelineStatus.FAILED
        assert "down" in result.error

    def test_store_failure_is_contained(self, ctx, whatsapp):
        with patch(
            "app.services.pipeline.get_or_create_conversation",
            side_effect=StoreError("get_or_create_conversation", "connection refused"),
        ):
            result = process_inbound_message(ctx, USER, "hi", "wamid.8")

        assert result.status == PipelineStatus.FAILED
        assert result.conversation_id is None
        whatsapp.send_text.assert_called_once_with(USER, MSG_GENERIC_ERROR)
        whatsapp.send_interactive.assert_not_called()

    def test_session_save_failure_rolls_back_outbound(self, ctx, session_factory, whatsapp):
        with patch(
            "app.services.pipeline.save_session",
            side_effect=StoreError("save_session", "disk full"),
        ):
            result = process_inbound_message(ctx, USER, "hi", "wamid.9")

        assert result.status == PipelineStatus.FAILED
        assert len(_load(session_factory, Message, direction="inbound")) == 1
        assert _load(session_factory, Message, direction="outbound") == []


class TestDispatchResponse:
    def test_routes_by_kind(self, whatsapp):
        dispatch_response(whatsapp, USER, TextResponse("hello"))
        dispatch_response(whatsapp, USER, MediaResponse(url="https://v.test/a.mp4", media_type="video", caption="c"))
        dispatch_response(whatsapp, USER, InteractiveResponse(header="h", body="b", buttons=("x", "y")))

        whatsapp.send_text.assert_called_once_with(USER, "hello")
        whatsapp.send_media.assert_called_once_with(USER, "https://v.test/a.mp4", "video", "c")
        whatsapp.send_interactive.assert_called_once_with(USER, "h", "b", ["x", "y"])

    def test_unknown_descriptor(self, whatsapp):
        with pytest.raises(TypeError):
            dispatch_response(whatsapp, USER, object())


class FlakyCache:
    """Dict-backed stand-in for redis.Redis whose Nth set fails."""

    def __init__(self, fail_on_set: int):
        self.data: dict[str, str] = {}
        self.fail_on_set = fail_on_set
        self.set_calls = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.set_calls += 1
        if self.set_calls == self.fail_on_set:
            raise RedisConnectionError("connection reset")
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


class TestSessionCacheConsistency:
    def test_failed_cache_refresh_does_not_serve_old_step(self, ctx, whatsapp, generation):
        ctx.cache = FlakyCache(fail_on_set=2)
        generation.invoke.return_value = GenerationResult(kind=ServiceKind.IMAGE, value="https://img.test/bike.png")

        assert process_inbound_message(ctx, USER, "hi", "wamid.c1").next_step == "menu_selection"
        assert process_inbound_message(ctx, USER, "image", "wamid.c2").next_step == "image_input"
        result = process_inbound_message(ctx, USER, "a red bicycle", "wamid.c3")

        assert result.status == PipelineStatus.PROCESSED
        assert result.next_step == "welcome"
        generation.invoke.assert_called_once_with(ServiceKind.IMAGE, {"prompt": "a red bicycle", "user": USER})

    def test_cache_holds_latest_step(self, ctx):
        ctx.cache = FlakyCache(fail_on_set=0)

        process_inbound_message(ctx, USER, "hi", "wamid.c4")
        process_inbound_message(ctx, USER, "video", "wamid.c5")

        assert json.loads(ctx.cache.data[f"{SESSION_CACHE_PREFIX}{USER}"])["step"] == "video_input"


class TestCommitFailure:
    def test_commit_error_is_reported_as_store_error(self, ctx, session_factory, whatsapp):
        def failing_commits():
            db = session_factory()
            db.commit = Mock(side_effect=OperationalError("COMMIT", {}, Exception("server closed the connection")))
            return db

        ctx.session_factory = failing_commits

        result = process_inbound_message(ctx, USER, "hi", "wamid.c6")

        assert result.status == PipelineStatus.FAILED
        assert result.error.startswith("commit_inbound failed")
        whatsapp.send_interactive.assert_not_called()
        whatsapp.send_text.assert_called_once_with(USER, MSG_GENERIC_ERROR)

    def test_failure_log_names_the_stage(self, ctx, whatsapp, caplog):
        whatsapp.send_interactive.side_effect = DeliveryError("rate limited", status_code=429)

        with caplog.at_level(logging.ERROR, logger="wabot.pipeline"):
            process_inbound_message(ctx, USER, "hi", "wamid.c7")

        (record,) = [r for r in caplog.records if r.name == "wabot.pipeline" and r.levelno == logging.ERROR]
        assert record.stage == "send"
        assert record.user_id == USER
        assert record.message_id == "wamid.c7"
