from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from relay.services.conversation_store import ConversationState
from relay.services.stage import Stage


class WebhookAck(BaseModel):
    received: bool = True


class PipelineOutcome(BaseModel):
    processed: bool
    delivered: bool = False
    stage: Optional[Stage] = None
    requires_human: bool = False
    sender: Optional[str] = None
    reason: Optional[str] = None
    degraded: bool = False

    @classmethod
    def ignored(cls, reason: Optional[str]) -> "PipelineOutcome":
        return cls(processed=False, reason=reason)


class HistoryEntryResponse(BaseModel):
    role: str
    text: str
    timestamp: datetime


class ConversationSnapshot(BaseModel):
    sender: str
    stage: Stage
    first_contact_at: datetime
    last_activity_at: datetime
    message_count: int
    history: list[HistoryEntryResponse]

    @classmethod
    def from_state(cls, state: ConversationState) -> "ConversationSnapshot":
        return cls(
            sender=state.sender,
            stage=state.stage,
            first_contact_at=state.first_contact_at,
            last_activity_at=state.last_activity_at,
            message_count=len(state.history),
            history=[
                HistoryEntryResponse(role=entry.role, text=entry.text, timestamp=entry.timestamp)
                for entry in state.history
            ],
        )


class HealthResponse(BaseModel):
    status: str = "ok"
    simulation_mode: bool
    ai_backend_configured: bool
    delivery_configured: bool
    conversations: int
