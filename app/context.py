from dataclasses import dataclass, field
from typing import Optional

import redis
from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.config import Settings
from app.database import build_engine, build_session_factory
from app.logging_config import get_logger
from app.schemas.session import ServiceKind
from app.services.dispatcher import MessageDispatcher
from app.services.generation_service import GenerationService
from app.services.ingestion_service import InboundMessage
from app.services.pipeline import PipelineResult, process_inbound_message
from app.services.whatsapp_service import WhatsAppService

logger = get_logger("context")


@dataclass
class AppContext:
    """Process-wide handles, built once at startup and passed to every component."""

    settings: Settings
    session_factory: sessionmaker
    whatsapp: WhatsAppService
    generation: GenerationService
    cache: Optional[redis.Redis] = None
    engine: Optional[Engine] = None
    dispatcher: MessageDispatcher = field(init=False)

    def __post_init__(self) -> None:
        self.dispatcher = MessageDispatcher(self.handle_inbound, self.settings.pipeline_max_concurrency)

    def handle_inbound(self, message: InboundMessage) -> PipelineResult:
        return process_inbound_message(
            self,
            message.user_id,
            message.text,
            message.message_id,
            message.display_name,
        )

    async def close(self) -> None:
        await self.dispatcher.shutdown()
        if self.cache is not None:
            self.cache.close()
        if self.engine is not None:
            self.engine.dispose()


def build_cache(redis_url: str) -> Optional[redis.Redis]:
    if not redis_url:
        logger.info("REDIS_URL not set, session cache disabled")
        return None
    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=0.5,
        socket_timeout=0.5,
    )


def build_context(settings: Settings) -> AppContext:
    engine = build_engine(settings.database_url)
    return AppContext(
        settings=settings,
        session_factory=build_session_factory(engine),
        whatsapp=WhatsAppService(
            settings.whatsapp_token,
            settings.whatsapp_phone_id,
            api_version=settings.whatsapp_api_version,
        ),
        generation=GenerationService(
            {
                ServiceKind.IMAGE: settings.image_api_url,
                ServiceKind.VIDEO: settings.video_api_url,
                ServiceKind.INFO: settings.info_api_url,
            },
            api_token=settings.custom_api_token,
            timeout=settings.generation_timeout_seconds,
        ),
        cache=build_cache(settings.redis_url),
        engine=engine,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
