import pytest
from unittest.mock import AsyncMock

from chatflow.config.settings import Settings
from chatflow.services.llm_client import LLMResponse
from chatflow.services.session_store import InMemorySessionStore
from chatflow.workflows.actions import ActionRegistry, FunctionAction, default_registry
from chatflow.workflows.definitions import DEFAULT_FLOW
from chatflow.workflows.engine import ChatOrchestrator
from chatflow.workflows.validator import load_flow_definition


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        environment="test",
        llm_history_limit=10,
        max_flow_steps=25,
        action_timeout_seconds=1.0,
        llm_timeout_seconds=1.0,
        session_ttl_seconds=3600,
        context_role="system",
        no_context_reply=None,
    )


@pytest.fixture
def llm_client():
    """A language model stand-in that always answers the same thing."""
    client = AsyncMock()
    client.chat.return_value = LLMResponse(content="Happy to help!")
    return client


@pytest.fixture
def session_store():
    return InMemorySessionStore(ttl_seconds=3600)


@pytest.fixture
def make_orchestrator(llm_client, session_store, test_settings):
    """
    Builds an orchestrator around DEFAULT_FLOW, or around a custom flow document.
    `actions` may be a registry or a dict of name -> function.
    """
    def _make(flow=None, actions=None, retriever=None, **overrides):
        if actions is None:
            registry = default_registry()
        elif isinstance(actions, ActionRegistry):
            registry = actions
        else:
            registry = ActionRegistry([FunctionAction(name, func) for name, func in actions.items()])

        config = test_settings.model_copy(update=overrides) if overrides else test_settings
        definition = load_flow_definition(flow or DEFAULT_FLOW, registry)
        return ChatOrchestrator(
            flow=definition,
            llm_client=llm_client,
            actions=registry,
            session_store=session_store,
            retriever=retriever,
            config=config,
        )
    return _make


@pytest.fixture
def retry_flow():
    """Trigger "check code" -> ask for a code -> validate_code action, erroring back to the prompt."""
    def _flow(retries: int, human_reason: str = "A human will take over.") -> dict:
        return {
            "nodes": {
                "check_code": {"type": "trigger", "match_phrases": ["check code"], "next": "ask_code"},
                "ask_code": {"type": "prompt", "text": "Send your code.", "expects": "code", "next": "validate"},
                "validate": {
                    "type": "action",
                    "function": "validate_code",
                    "retries": retries,
                    "next": {"success": "valid_exit", "error": "ask_code_again", "human": "human_exit"},
                },
                "ask_code_again": {"type": "prompt", "text": "Code {{code}} is invalid, try again.", "expects": "code", "next": "validate"},
                "valid_exit": {"type": "exit", "reason": "Code accepted."},
                "human_exit": {"type": "exit", "reason": human_reason},
                "error_exit": {"type": "exit", "reason": "Too many attempts."},
            }
        }
    return _flow
