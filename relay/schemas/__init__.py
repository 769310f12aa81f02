from relay.schemas.webhook import (
    ConversationSnapshot,
    HealthResponse,
    HistoryEntryResponse,
    PipelineOutcome,
    WebhookAck,
)

__all__ = ["ConversationSnapshot", "HealthResponse", "HistoryEntryResponse", "PipelineOutcome", "WebhookAck"]
