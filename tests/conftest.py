import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from relay.config import Settings
from relay.services.ai_relay import AIReply
from relay.services.conversation_store import ConversationStore
from relay.services.result import Result

BASE_TIME = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeAIClient:
    """Returns a fixed reply, yielding to the loop like a real network call."""

    def __init__(self, text: str = "Olá!", stage=None, requires_human: bool = False, degraded: bool = False):
        self.text = text
        self.stage = stage
        self.requires_human = requires_human
        self.degraded = degraded
        self.history_window = 5
        self.calls = []

    async def relay(self, message, state, history):
        self.calls.append({"message": message, "history": [entry.text for entry in history]})
        await asyncio.sleep(0)
        return AIReply(
            text=self.text,
            stage=self.stage or state.stage,
            requires_human=self.requires_human,
            degraded=self.degraded,
        )


class FakeDeliveryClient:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.calls = []

    async def deliver(self, recipient, text):
        self.calls.append((recipient, text))
        if self.ok:
            return Result.success("primary")
        return Result.failure("All delivery attempts failed", "delivery_failed")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def settings():
    return Settings(
        ai_backend_url="https://ai.example-backend.io/hook",
        ai_backend_token="ai-token",
        delivery_base_url="https://platform.test/api",
        delivery_api_key="delivery-key",
        webhook_secret=None,
        simulation_mode=False,
        debug_token=None,
    )
