"""Read-only introspection over conversation state, plus explicit deletion."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from relay.config import Settings
from relay.dependencies import get_pipeline, get_settings, get_store
from relay.schemas.webhook import ConversationSnapshot, PipelineOutcome
from relay.services.conversation_store import ConversationStore
from relay.services.pipeline import MessagePipeline


def _require_debug_token(
    settings: Settings = Depends(get_settings),
    x_debug_token: Optional[str] = Header(default=None, alias="X-Debug-Token"),
) -> None:
    expected = settings.debug_token
    if not expected:
        return
    if not x_debug_token or x_debug_token != expected:
        raise HTTPException(status_code=401, detail="Invalid debug token")


router = APIRouter(prefix="/debug", tags=["debug"], dependencies=[Depends(_require_debug_token)])


@router.get("/conversations", response_model=list[ConversationSnapshot])
async def list_conversations(store: ConversationStore = Depends(get_store)):
    return [ConversationSnapshot.from_state(state) for state in store.snapshots()]


@router.get("/conversations/{sender}", response_model=ConversationSnapshot)
async def get_conversation(sender: str, store: ConversationStore = Depends(get_store)):
    state = store.snapshot(sender)
    if state is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationSnapshot.from_state(state)


@router.delete("/conversations/{sender}")
async def delete_conversation(sender: str, store: ConversationStore = Depends(get_store)):
    if not await store.delete(sender):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"deleted": True, "sender": sender}


@router.get("/outcomes", response_model=list[PipelineOutcome])
async def recent_outcomes(pipeline: MessagePipeline = Depends(get_pipeline)):
    return list(pipeline.recent_outcomes)
