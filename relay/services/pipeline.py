"""Per-message orchestration: normalize, load context, relay, classify, deliver.

Each inbound webhook body becomes one independent task. Steps for the same
sender run inside that sender's store session, so two messages from one
sender are handled one after the other while other senders proceed in
parallel. Every failure is absorbed into the returned outcome.
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from relay.logging_config import get_logger, preview, sender_logger
from relay.schemas.webhook import PipelineOutcome
from relay.services.ai_relay import AIRelayClient
from relay.services.conversation_store import ConversationStore
from relay.services.delivery import DeliveryClient
from relay.services.normalizer import normalize
from relay.services.stage import Stage, classify

logger = get_logger("pipeline")

RECENT_OUTCOMES_LIMIT = 100


class MessagePipeline:
    def __init__(
        self,
        store: ConversationStore,
        ai_client: AIRelayClient,
        delivery_client: DeliveryClient,
        clock: Optional[Callable[[], datetime]] = None,
        recent_limit: int = RECENT_OUTCOMES_LIMIT,
    ):
        self.store = store
        self.ai_client = ai_client
        self.delivery_client = delivery_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: set[asyncio.Task] = set()
        self.recent_outcomes: deque[PipelineOutcome] = deque(maxlen=recent_limit)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _finish(self, outcome: PipelineOutcome) -> PipelineOutcome:
        self.recent_outcomes.append(outcome)
        return outcome

    async def process(self, body: Any) -> PipelineOutcome:
        normalized = normalize(body)
        if not normalized.ok:
            return self._finish(PipelineOutcome.ignored(normalized.error_code))

        message = normalized.value
        sender = message.sender
        log = sender_logger(logger, sender)

        async with self.store.session(sender, self._clock()) as state:
            now = self._clock()
            # Classify against the state as it stood before this message landed.
            stage = classify(state, now)
            self.store.append_user(sender, message.text, now)
            self.store.set_stage(sender, stage)
            history = self.store.recent_context(sender, self.ai_client.history_window)
            log.info(
                "Context loaded",
                context={
                    "stage": stage.value,
                    "history_len": len(state.history),
                    "window": len(history),
                    "text_preview": preview(message.text),
                },
            )

            reply = await self.ai_client.relay(message, state, history)

            self.store.set_stage(sender, reply.stage)
            self.store.append_assistant(sender, reply.text, self._clock())

        delivery = await self.delivery_client.deliver(sender, reply.text)

        outcome = PipelineOutcome(
            processed=True,
            delivered=delivery.ok,
            stage=reply.stage,
            requires_human=reply.requires_human,
            sender=sender,
            reason=None if delivery.ok else delivery.error_code,
            degraded=reply.degraded,
        )
        log.info("Pipeline done", context=outcome.model_dump(mode="json"))
        return self._finish(outcome)

    async def _run(self, body: Any) -> PipelineOutcome:
        try:
            return await self.process(body)
        except Exception as exc:
            logger.error(f"Pipeline failed: {exc}", exc_info=True)
            return self._finish(PipelineOutcome(processed=False, stage=Stage.ERROR, reason="pipeline_error"))

    def schedule(self, body: Any) -> asyncio.Task:
        """Start processing in the background and return immediately."""
        task = asyncio.create_task(self._run(body))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
