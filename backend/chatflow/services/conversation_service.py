# /chatflow/services/conversation_service.py

import logging
from typing import Optional

from chatflow.config import strings
from chatflow.config.settings import Settings, settings
from chatflow.errors import ChatflowError
from chatflow.services.context import KnowledgeRetriever
from chatflow.services.llm_client import LLMClient, OpenAIChatClient
from chatflow.services.session_store import create_session_store
from chatflow.utils.logging import setup_logging
from chatflow.utils.metrics import fallback_replies_counter
from chatflow.workflows.actions import ActionRegistry, default_registry
from chatflow.workflows.definitions import DEFAULT_FLOW
from chatflow.workflows.engine import ChatOrchestrator
from chatflow.workflows.validator import load_flow_definition, load_flow_definition_file

# This is the seam the messaging transport (webhook worker, test console)
# talks to. It validates the inbound text, asks the orchestrator for a reply
# and turns engine errors into a polite message for the customer.

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, orchestrator: ChatOrchestrator, max_message_length: int = settings.max_message_length):
        self.orchestrator = orchestrator
        self.max_message_length = max_message_length

    async def reply(self, user_id: str, text: Optional[str]) -> str:
        """Always returns something to send back; engine failures become a fallback string."""
        clean_text = (text or "").strip()
        if not clean_text:
            fallback_replies_counter.labels(reason="empty_message").inc()
            return strings.INVALID_MESSAGE_REPLY
        if len(clean_text) > self.max_message_length:
            logger.warning(f"Rejected message from {user_id}: {len(clean_text)} chars exceeds {self.max_message_length}")
            fallback_replies_counter.labels(reason="message_too_long").inc()
            return strings.INVALID_MESSAGE_REPLY

        try:
            return await self.orchestrator.handle_message(user_id, clean_text)
        except ChatflowError as e:
            logger.error(f"Could not produce a reply for {user_id}: {e}", exc_info=True)
            fallback_replies_counter.labels(reason=type(e).__name__).inc()
            return strings.GENERIC_ERROR_REPLY


def build_orchestrator(
    config: Settings = settings,
    llm_client: Optional[LLMClient] = None,
    actions: Optional[ActionRegistry] = None,
    retriever: Optional[KnowledgeRetriever] = None,
    redis_client=None,
) -> ChatOrchestrator:
    """Wires the orchestrator from settings. The flow is validated here, before any message is handled."""
    if actions is None:
        actions = default_registry()
    if config.flow_definition_path:
        flow = load_flow_definition_file(config.flow_definition_path, actions)
        logger.info(f"Loaded flow definition from {config.flow_definition_path}")
    else:
        flow = load_flow_definition(DEFAULT_FLOW, actions)

    return ChatOrchestrator(
        flow=flow,
        llm_client=llm_client or OpenAIChatClient.from_settings(config),
        actions=actions,
        session_store=create_session_store(config, redis_client),
        retriever=retriever,
        config=config,
    )


def build_conversation_service(config: Settings = settings, **kwargs) -> ConversationService:
    """Startup entry point for a host process: configures logging, then wires the engine."""
    setup_logging(config.environment, config.log_level)
    orchestrator = build_orchestrator(config, **kwargs)
    return ConversationService(orchestrator, max_message_length=config.max_message_length)
