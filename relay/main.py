from typing import Optional

from fastapi import Depends, FastAPI

from relay.config import Settings
from relay.config import settings as default_settings
from relay.dependencies import get_settings, get_store
from relay.logging_config import get_logger, setup_logging
from relay.routers import debug, webhook
from relay.schemas.webhook import HealthResponse
from relay.services.ai_relay import AIRelayClient
from relay.services.conversation_store import ConversationStore
from relay.services.delivery import DeliveryClient
from relay.services.pipeline import MessagePipeline

logger = get_logger("main")


def build_pipeline(settings: Settings, store: ConversationStore) -> MessagePipeline:
    return MessagePipeline(
        store=store,
        ai_client=AIRelayClient(settings),
        delivery_client=DeliveryClient(settings),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="Chat Relay",
        description="Relays WhatsApp webhook messages to an AI backend and delivers the replies",
        version="0.1.0",
    )

    store = ConversationStore()
    app.state.settings = settings
    app.state.store = store
    app.state.pipeline = build_pipeline(settings, store)

    app.include_router(webhook.router)
    app.include_router(debug.router)

    @app.on_event("startup")
    async def log_startup() -> None:
        logger.info(
            "Relay started",
            extra={
                "context": {
                    "simulation_mode": settings.simulation_mode,
                    "ai_backend_configured": settings.ai_backend_configured,
                    "delivery_configured": settings.delivery_configured,
                    "webhook_secret_enabled": bool(settings.webhook_secret),
                }
            },
        )
        if not settings.ai_backend_configured:
            logger.warning("AI_BACKEND_URL is missing or a placeholder; replies will be degraded")

    @app.on_event("shutdown")
    async def drain_pipeline() -> None:
        pipeline: MessagePipeline = app.state.pipeline
        if pipeline.in_flight:
            logger.info("Draining in-flight pipelines", extra={"context": {"in_flight": pipeline.in_flight}})
        await pipeline.drain()

    @app.get("/health", response_model=HealthResponse)
    async def health(
        current: Settings = Depends(get_settings),
        store: ConversationStore = Depends(get_store),
    ):
        return HealthResponse(
            simulation_mode=current.simulation_mode,
            ai_backend_configured=current.ai_backend_configured,
            delivery_configured=current.delivery_configured,
            conversations=len(store),
        )

    return app


setup_logging(default_settings.log_level)

app = create_app()
