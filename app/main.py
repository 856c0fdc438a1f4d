import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.context import AppContext, build_context
from app.database import init_db
from app.logging_config import get_logger, setup_logging
from app.routers import api, webhook

setup_logging(settings.log_level)

logger = get_logger("main")


def _cors_origins(value: str) -> list[str]:
    origins = [origin.strip() for origin in value.split(",") if origin.strip()]
    return origins or ["*"]


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    app = FastAPI(
        title="WhatsApp Bot API",
        description="Webhook-driven WhatsApp bot with a step-based dialog",
        version="0.1.0",
    )
    app.state.context = context
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings.cors_allow_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhook.router)
    app.include_router(api.router)

    @app.on_event("startup")
    async def start_context() -> None:
        if app.state.context is not None:
            return
        logger.info(
            "Environment check",
            extra={
                "context": {
                    # host/dbname only, credentials stripped
                    "database": settings.database_url.rsplit("@", 1)[-1],
                    "whatsapp_token": "SET" if settings.whatsapp_token else "NOT SET",
                    "whatsapp_phone_id": settings.whatsapp_phone_id or "NOT SET",
                    "verify_token": "SET" if settings.webhook_verify_token else "NOT SET",
                    "redis": "SET" if settings.redis_url else "NOT SET",
                }
            },
        )
        ctx = build_context(settings)
        init_db(ctx.engine)
        app.state.context = ctx
        logger.info("Database initialized, bot ready")

    @app.on_event("shutdown")
    async def stop_context() -> None:
        ctx = app.state.context
        if ctx is None:
            return
        await ctx.close()
        app.state.context = None
        logger.info("Shutdown complete")

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
        }

    return app


app = create_app()
