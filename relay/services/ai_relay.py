import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from relay.config import Settings
from relay.logging_config import get_logger, preview
from relay.services.conversation_store import ConversationState, HistoryEntry
from relay.services.normalizer import CanonicalMessage
from relay.services.stage import Stage, days_since

logger = get_logger("ai_relay")

DEFAULT_ACK_TEXT = "Recebemos sua mensagem. Obrigado!"
DEGRADED_TEXT = "Desculpe, ocorreu um erro ao processar sua mensagem. Tente novamente."


@dataclass(frozen=True)
class AIReply:
    text: str
    stage: Stage
    requires_human: bool = False
    degraded: bool = False


def degraded_reply(stage: Stage) -> AIReply:
    return AIReply(text=DEGRADED_TEXT, stage=stage, requires_human=True, degraded=True)


def build_context_summary(stage: Stage, days_since_first: float) -> str:
    return f"Cliente {stage.value}. Dias desde primeiro contato: {math.floor(days_since_first)}"


def _coerce_text(value: object) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _coerce_requires_human(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "sim"}
    return bool(value)


def parse_reply(data: dict, current_stage: Stage) -> AIReply:
    """Map a backend response body onto an AIReply."""
    text = _coerce_text(data.get("response")) or _coerce_text(data.get("message")) or DEFAULT_ACK_TEXT
    stage = Stage.parse(data.get("customer_type")) or Stage.parse(data.get("stage")) or current_stage
    return AIReply(text=text, stage=stage, requires_human=_coerce_requires_human(data.get("requires_human")))


class AIRelayClient:
    """Forwards a sender's message and recent history to the AI backend."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.url = settings.ai_backend_url.strip()
        self.token = settings.ai_backend_token
        self.timeout = settings.ai_timeout_seconds
        self.history_window = settings.history_window
        self.configured = settings.ai_backend_configured
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def build_payload(
        self, message: CanonicalMessage, state: ConversationState, history: list[HistoryEntry]
    ) -> dict:
        """``history`` is the recent window, oldest first, as the store hands it out."""
        now = self._clock()
        return {
            "message": message.text,
            "sender": message.sender,
            "phone": message.sender,
            "senderName": message.sender_name,
            "customer_type": state.stage.value,
            "stage": state.stage.value,
            "conversation_history": [entry.to_payload() for entry in history],
            "context": build_context_summary(state.stage, days_since(state.first_contact_at, now)),
            "timestamp": now.isoformat(),
        }

    async def relay(
        self, message: CanonicalMessage, state: ConversationState, history: list[HistoryEntry]
    ) -> AIReply:
        """Ask the backend for a reply; any failure yields the degraded reply."""
        current_stage = state.stage
        log_context = {"sender": message.sender, "stage": current_stage.value}

        if not self.configured:
            logger.warning("AI backend URL not configured, using degraded reply", extra={"context": log_context})
            return degraded_reply(current_stage)

        payload = self.build_payload(message, state, history)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=self._headers())
        except httpx.TimeoutException:
            logger.error("AI backend timed out", extra={"context": {**log_context, "timeout": self.timeout}})
            return degraded_reply(current_stage)
        except httpx.HTTPError as exc:
            logger.error(f"AI backend request failed: {exc}", extra={"context": log_context})
            return degraded_reply(current_stage)

        if not response.is_success:
            logger.error(
                "AI backend returned an error status",
                extra={"context": {**log_context, "status": response.status_code, "body": response.text[:200]}},
            )
            return degraded_reply(current_stage)

        try:
            data = response.json()
        except ValueError:
            logger.error("AI backend returned invalid JSON", extra={"context": {**log_context, "body": response.text[:200]}})
            return degraded_reply(current_stage)

        if not isinstance(data, dict):
            logger.error("AI backend returned a non-object body", extra={"context": log_context})
            return degraded_reply(current_stage)

        reply = parse_reply(data, current_stage)
        logger.info(
            "AI reply received",
            extra={
                "context": {
                    **log_context,
                    "reply_stage": reply.stage.value,
                    "requires_human": reply.requires_human,
                    "text_preview": preview(reply.text),
                }
            },
        )
        return reply
