from fastapi import Request

from relay.config import Settings
from relay.services.conversation_store import ConversationStore
from relay.services.pipeline import MessagePipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline
