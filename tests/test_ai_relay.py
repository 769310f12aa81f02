import json
from datetime import timedelta

import httpx
import pytest

from conftest import BASE_TIME, FakeClock
from relay.config import Settings
from relay.services.ai_relay import (
    DEFAULT_ACK_TEXT,
    DEGRADED_TEXT,
    AIRelayClient,
    build_context_summary,
    parse_reply,
)
from relay.services.conversation_store import ConversationStore
from relay.services.normalizer import CanonicalMessage
from relay.services.stage import Stage


def _client(settings: Settings, handler, clock=None) -> AIRelayClient:
    return AIRelayClient(settings, transport=httpx.MockTransport(handler), clock=clock or FakeClock())


def _conversation(count: int, stage: Stage = Stage.RETURNING):
    """State plus the five-entry window the store hands to the relay."""
    store = ConversationStore()
    store.get_or_create("551199999999", BASE_TIME - timedelta(days=3, hours=2))
    for i in range(count):
        if i % 2 == 0:
            store.append_user("551199999999", f"msg{i}", BASE_TIME)
        else:
            store.append_assistant("551199999999", f"msg{i}", BASE_TIME)
    store.set_stage("551199999999", stage)
    return store.get_or_create("551199999999"), store.recent_context("551199999999", 5)


MESSAGE = CanonicalMessage(sender="551199999999", text="Olá", sender_name="Maria")


class TestParseReply:
    def test_prefers_response_field(self):
        reply = parse_reply({"response": "A", "message": "B"}, Stage.NEW)
        assert reply.text == "A"

    def test_falls_back_to_message_then_ack(self):
        assert parse_reply({"message": "B"}, Stage.NEW).text == "B"
        assert parse_reply({}, Stage.NEW).text == DEFAULT_ACK_TEXT

    def test_stage_defaults_to_current(self):
        reply = parse_reply({"response": "A"}, Stage.RETURNING)
        assert reply.stage == Stage.RETURNING
        assert reply.requires_human is False
        assert reply.degraded is False

    def test_stage_from_customer_type_or_stage(self):
        assert parse_reply({"customer_type": "at_risk"}, Stage.NEW).stage == Stage.AT_RISK
        assert parse_reply({"stage": "established"}, Stage.NEW).stage == Stage.ESTABLISHED

    def test_requires_human_flag(self):
        assert parse_reply({"requires_human": True}, Stage.NEW).requires_human is True
        assert parse_reply({"requires_human": "true"}, Stage.NEW).requires_human is True
        assert parse_reply({"requires_human": "false"}, Stage.NEW).requires_human is False


def test_context_summary():
    assert build_context_summary(Stage.RETURNING, 3.9) == "Cliente returning. Dias desde primeiro contato: 3"


class TestRelay:
    @pytest.mark.asyncio
    async def test_request_contract(self, settings):
        recorded = {}

        def handler(request: httpx.Request) -> httpx.Response:
            recorded["url"] = str(request.url)
            recorded["headers"] = request.headers
            recorded["json"] = json.loads(request.content.decode("utf-8"))
            return httpx.Response(200, json={"response": "Bem-vindo", "customer_type": "new", "requires_human": False})

        reply = await _client(settings, handler).relay(MESSAGE, *_conversation(7))

        payload = recorded["json"]
        assert recorded["url"] == "https://ai.example-backend.io/hook"
        assert recorded["headers"]["authorization"] == "Bearer ai-token"
        assert payload["message"] == "Olá"
        assert payload["sender"] == "551199999999"
        assert payload["phone"] == "551199999999"
        assert payload["senderName"] == "Maria"
        assert payload["customer_type"] == "returning"
        assert payload["stage"] == "returning"
        assert [entry["content"] for entry in payload["conversation_history"]] == [
            "msg2",
            "msg3",
            "msg4",
            "msg5",
            "msg6",
        ]
        assert payload["conversation_history"][0]["role"] == "user"
        assert payload["context"] == "Cliente returning. Dias desde primeiro contato: 3"
        assert reply.text == "Bem-vindo"
        assert reply.stage == Stage.NEW
        assert reply.degraded is False

    @pytest.mark.asyncio
    async def test_no_token_means_no_authorization_header(self, settings):
        recorded = {}

        def handler(request: httpx.Request) -> httpx.Response:
            recorded["headers"] = request.headers
            return httpx.Response(200, json={"response": "ok"})

        plain = settings.model_copy(update={"ai_backend_token": None})
        await _client(plain, handler).relay(MESSAGE, *_conversation(1))

        assert "authorization" not in recorded["headers"]

    @pytest.mark.asyncio
    async def test_non_2xx_returns_degraded_reply(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        reply = await _client(settings, handler).relay(MESSAGE, *_conversation(1, Stage.AT_RISK))

        assert reply.text == DEGRADED_TEXT
        assert reply.stage == Stage.AT_RISK
        assert reply.requires_human is True
        assert reply.degraded is True

    @pytest.mark.asyncio
    async def test_timeout_returns_degraded_reply(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        reply = await _client(settings, handler).relay(MESSAGE, *_conversation(1))

        assert reply.degraded is True
        assert reply.requires_human is True

    @pytest.mark.asyncio
    async def test_network_error_returns_degraded_reply(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        reply = await _client(settings, handler).relay(MESSAGE, *_conversation(1))

        assert reply.text == DEGRADED_TEXT

    @pytest.mark.asyncio
    async def test_invalid_json_returns_degraded_reply(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        reply = await _client(settings, handler).relay(MESSAGE, *_conversation(1))

        assert reply.degraded is True

    @pytest.mark.asyncio
    async def test_placeholder_url_skips_the_call(self, settings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"response": "never"})

        misconfigured = settings.model_copy(update={"ai_backend_url": "https://seu-webhook-aqui"})
        reply = await _client(misconfigured, handler).relay(MESSAGE, *_conversation(1))

        assert calls == []
        assert reply.degraded is True
