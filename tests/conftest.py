from unittest.mock import Mock

import pytest

from app.config import Settings
from app.context import AppContext
from app.database import build_engine, build_session_factory, init_db
from app.services.generation_service import GenerationService
from app.services.whatsapp_service import WhatsAppService


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "redis_url": "",
        "whatsapp_token": "test-token",
        "whatsapp_phone_id": "1234567890",
        "webhook_verify_token": "verify-me",
        "custom_api_token": "api-token",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def engine():
    """In-memory SQLite with the bot schema."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def whatsapp():
    """WhatsApp client double; every send is acknowledged."""
    client = Mock(spec=WhatsAppService)
    ack = {"messaging_product": "whatsapp", "messages": [{"id": "wamid.ACK"}]}
    client.send_text.return_value = ack
    client.send_media.return_value = ack
    client.send_interactive.return_value = ack
    return client


@pytest.fixture
def generation():
    return Mock(spec=GenerationService)


@pytest.fixture
def ctx(settings, session_factory, whatsapp, generation):
    return AppContext(
        settings=settings,
        session_factory=session_factory,
        whatsapp=whatsapp,
        generation=generation,
    )
