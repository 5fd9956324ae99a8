# backend/tests/integration/test_conversation_service.py
import asyncio
import json
import pytest
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from chatflow.config import strings
from chatflow.errors import FlowConfigurationError, LLMClientError
from chatflow.services.conversation_service import ConversationService, build_conversation_service, build_orchestrator
from chatflow.services.session_store import InMemorySessionStore, RedisSessionStore
from chatflow.workflows.actions import ActionRegistry


@pytest.fixture
def redis_client():
    """An AsyncMock redis whose get/setex/delete share one dict."""
    data = {}
    client = AsyncMock()
    client.get.side_effect = lambda key: data.get(key)
    client.setex.side_effect = lambda key, ttl, value: data.__setitem__(key, value.encode("utf-8"))
    client.delete.side_effect = lambda key: data.pop(key, None)
    client.data = data
    return client


@pytest.mark.asyncio
async def test_order_tracking_conversation_over_redis(test_settings, llm_client, redis_client):
    config = test_settings.model_copy(update={"session_backend": "redis"})
    service = build_conversation_service(config, llm_client=llm_client, redis_client=redis_client)

    assert isinstance(service.orchestrator.session_store, RedisSessionStore)
    assert await service.reply("u1", "  Where is my order?  ") == "What is your order id?"
    assert await service.reply("u1", "Z9") == "I couldn't find order Z9. Please check the id and send it again."
    assert await service.reply("u1", "A123") == "Your order is: Shipped"

    stored = json.loads(redis_client.data["chatflow:session:u1"])
    assert stored["current_node"] == "order_found"
    assert stored["variables"] == {"order_id": "A123", "status": "Shipped"}

    assert await service.reply("u1", "ok thanks") == "Thanks for contacting us! Is there anything else I can help with?"
    stored = json.loads(redis_client.data["chatflow:session:u1"])
    assert (stored["current_node"], stored["variables"]) == (None, {})
    assert redis_client.setex.await_args.args[1] == config.session_ttl_seconds


@pytest.mark.asyncio
async def test_chat_then_flow_keeps_history(test_settings, llm_client):
    orchestrator = build_orchestrator(test_settings, llm_client=llm_client)
    service = ConversationService(orchestrator)

    assert isinstance(orchestrator.session_store, InMemorySessionStore)
    assert await service.reply("u1", "hello") == "Happy to help!"
    assert await service.reply("u1", "order status") == "What is your order id?"
    assert await service.reply("u1", "agent") == "I'm connecting you with a member of our team. They will reply here shortly."

    session = await orchestrator.session_store.get("u1")
    assert [h.content for h in session.llm_history] == ["hello", "Happy to help!"]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, "", "   ", "x" * 20])
async def test_invalid_messages_get_a_polite_reply(test_settings, llm_client, text):
    orchestrator = build_orchestrator(test_settings, llm_client=llm_client)
    service = ConversationService(orchestrator, max_message_length=10)

    assert await service.reply("u1", text) == strings.INVALID_MESSAGE_REPLY
    llm_client.chat.assert_not_awaited()


@pytest.mark.asyncio
async def test_engine_errors_become_fallback_reply(test_settings, llm_client):
    llm_client.chat.side_effect = LLMClientError("model unavailable")
    orchestrator = build_orchestrator(test_settings, llm_client=llm_client)
    service = ConversationService(orchestrator)

    assert await service.reply("u1", "hello") == strings.GENERIC_ERROR_REPLY
    assert await orchestrator.session_store.get("u1") is None


@pytest.mark.asyncio
async def test_store_outage_becomes_fallback_reply(test_settings, llm_client, redis_client):
    redis_client.get.side_effect = RedisConnectionError("down")
    config = test_settings.model_copy(update={"session_backend": "redis"})
    service = build_conversation_service(config, llm_client=llm_client, redis_client=redis_client)

    assert await service.reply("u1", "hello") == strings.GENERIC_ERROR_REPLY


@pytest.mark.asyncio
async def test_concurrent_messages_for_one_user_are_serialized(test_settings, llm_client):
    active = 0
    overlaps = []

    async def slow_chat(messages):
        nonlocal active
        active += 1
        overlaps.append(active)
        await asyncio.sleep(0.01)
        active -= 1
        return llm_client.chat.return_value

    llm_client.chat.side_effect = slow_chat
    service = build_conversation_service(test_settings, llm_client=llm_client)

    replies = await asyncio.gather(*(service.reply("u1", f"question {i}") for i in range(3)))

    assert replies == ["Happy to help!"] * 3
    assert max(overlaps) == 1
    session = await service.orchestrator.session_store.get("u1")
    assert len(session.llm_history) == 6


def test_flow_file_with_unknown_action_fails_at_startup(tmp_path, test_settings, llm_client):
    path = tmp_path / "flow.json"
    path.write_text(json.dumps({
        "nodes": {
            "start": {"type": "trigger", "match_phrases": ["refund"], "next": "refund"},
            "refund": {"type": "action", "function": "issue_refund",
                       "next": {"success": "error_exit", "error": "error_exit", "human": "error_exit"}},
            "error_exit": {"type": "exit", "reason": "Sorry."},
        }
    }))
    config = test_settings.model_copy(update={"flow_definition_path": str(path)})

    with pytest.raises(FlowConfigurationError) as exc_info:
        build_orchestrator(config, llm_client=llm_client)
    assert any("issue_refund" in p for p in exc_info.value.problems)


def test_empty_action_registry_is_kept(test_settings, llm_client):
    # The built-in flow needs get_order_status, so an empty registry must fail validation
    with pytest.raises(FlowConfigurationError) as exc_info:
        build_orchestrator(test_settings, llm_client=llm_client, actions=ActionRegistry())
    assert any("get_order_status" in p for p in exc_info.value.problems)

