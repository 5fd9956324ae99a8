# /chatflow/workflows/engine.py

"""
Conversation flow orchestration.

For each inbound message the orchestrator decides whether to:
- continue the flow the user is already in,
- start a new flow because the message matched a trigger, or
- fall back to free-form chat with the language model.

Flow nodes are walked by an explicit loop with two phases. HANDLE consumes
the node at the cursor (capturing input, running an action, following
`next`); EVALUATE renders the node the cursor just moved to (a prompt's text,
an exit's reason) or, for an action, switches back to HANDLE so chained
actions run without waiting for the user. The loop is capped at
`max_flow_steps` per message.

Only two collaborators can fail unexpectedly, the action functions and the
language model. Their errors propagate as ActionExecutionError and
LLMClientError; the stored session is left as it was before the message.
"""

import asyncio
import re
from typing import Dict, List, Optional

import structlog

from chatflow.config.settings import Settings, settings
from chatflow.errors import ActionExecutionError, FlowConfigurationError, LLMClientError
from chatflow.models.actions import ActionResult
from chatflow.models.flow import ActionNode, ExitNode, FlowDefinition, PromptNode, TriggerNode
from chatflow.models.session import SessionState
from chatflow.services.context import ContextAssembler, KnowledgeRetriever
from chatflow.services.llm_client import LLMClient
from chatflow.services.session_store import InMemorySessionStore, SessionStore
from chatflow.utils.locks import UserLockRegistry
from chatflow.utils.metrics import (
    action_results_counter,
    flow_exits_counter,
    handle_message_histogram,
    llm_requests_counter,
    messages_counter,
)
from chatflow.workflows.actions import ActionRegistry
from chatflow.workflows.validator import validate_flow_definition

log = structlog.get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def render_template(text: str, variables: Dict[str, str]) -> str:
    """Replaces each {{name}} with its variable, or with "" when unset. Single pass, never raises."""
    return PLACEHOLDER_RE.sub(lambda m: str(variables.get(m.group(1), "")), text)


class ChatOrchestrator:
    def __init__(
        self,
        flow: FlowDefinition,
        llm_client: LLMClient,
        actions: ActionRegistry,
        session_store: Optional[SessionStore] = None,
        retriever: Optional[KnowledgeRetriever] = None,
        config: Settings = settings,
    ):
        failures = validate_flow_definition(flow, actions)
        if failures:
            raise FlowConfigurationError([f["message"] for f in failures])

        self.flow = flow
        self.llm_client = llm_client
        self.actions = actions
        if session_store is None:
            session_store = InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
        self.session_store = session_store
        self.retriever = retriever
        self.config = config
        self.context_assembler = ContextAssembler(config.llm_history_limit, config.context_role)
        self._locks = UserLockRegistry()

    # --- Entry point ---

    async def handle_message(self, user_id: str, text: str) -> str:
        """Produces the reply to one inbound message, updating the user's session."""
        async with self._locks.acquire(user_id):
            with handle_message_histogram.time():
                session = await self._load_session(user_id)
                reply = await self._route(session, text)
                session.touch()
                await self.session_store.set(session)
                return reply

    def detect_intent(self, text: str) -> Optional[str]:
        """Returns the first trigger (in definition order) with a phrase contained in the text."""
        lowered = text.lower()
        for node_id, node in self.flow.triggers():
            if any(phrase in lowered for phrase in node.match_phrases):
                return node_id
        return None

    # --- Routing ---

    async def _load_session(self, user_id: str) -> SessionState:
        session = await self.session_store.get(user_id)
        if session is None:
            return SessionState(user_id=user_id)

        if session.in_flow and self.flow.get(session.current_node) is None:
            log.warning(
                "stale_flow_cursor",
                user_id=user_id,
                flow=session.active_flow_name,
                node=session.current_node,
            )
            session.reset_flow()
        return session

    async def _route(self, session: SessionState, text: str) -> str:
        if session.in_flow:
            messages_counter.labels(route="flow").inc()
            return await self._run_flow(session, text)

        trigger_id = self.detect_intent(text)
        if trigger_id is not None:
            trigger = self.flow.nodes[trigger_id]
            session.start_flow(trigger_id, trigger.next)
            messages_counter.labels(route="trigger").inc()
            log.info("flow_started", user_id=session.user_id, flow=trigger_id)
            return await self._run_flow(session, None, evaluate=True)

        messages_counter.labels(route="chat").inc()
        return await self._chat(session, text)

    # --- Flow execution ---

    async def _run_flow(self, session: SessionState, text: Optional[str], evaluate: bool = False) -> str:
        steps = 0
        while True:
            if steps >= self.config.max_flow_steps:
                log.error(
                    "flow_step_limit_exceeded",
                    user_id=session.user_id,
                    flow=session.active_flow_name,
                    node=session.current_node,
                    max_steps=self.config.max_flow_steps,
                )
                return self._exit_flow(session, self.flow.error_exit.reason, "step_limit")
            steps += 1

            node = self.flow.nodes[session.current_node]

            if evaluate:
                if isinstance(node, PromptNode):
                    return render_template(node.text, session.variables)
                if isinstance(node, ExitNode):
                    return self._exit_flow(session, node.reason, "completed")
                if isinstance(node, ActionNode):
                    # Run the action right away, with no user input
                    evaluate = False
                    text = None
                    continue
                raise FlowConfigurationError([f"Cannot evaluate node '{session.current_node}' of type '{node.type}'"])

            if isinstance(node, PromptNode):
                if node.expects and text is not None:
                    session.variables[node.expects] = text
                session.current_node = node.next

            elif isinstance(node, ActionNode):
                result = await self._execute_action(node, session)

                if result.escalate:
                    human = self.flow.nodes[node.next.human]
                    log.info("action_escalated", user_id=session.user_id, action=node.function)
                    return self._exit_flow(session, human.reason, "escalated")

                if result.success:
                    session.current_node = node.next.success
                else:
                    failures = session.retries.get(node.function, 0) + 1
                    session.retries[node.function] = failures
                    log.info(
                        "action_failed",
                        user_id=session.user_id,
                        action=node.function,
                        failures=failures,
                        retries=node.retries,
                    )
                    if failures > node.retries:
                        return self._exit_flow(session, self.flow.error_exit.reason, "error_exit")
                    session.current_node = node.next.error

            elif isinstance(node, ExitNode):
                return self._exit_flow(session, node.reason, "completed")

            elif isinstance(node, TriggerNode):
                raise FlowConfigurationError([f"Flow cursor reached trigger node '{session.current_node}'"])

            evaluate = True
            text = None

    async def _execute_action(self, node: ActionNode, session: SessionState) -> ActionResult:
        action = self.actions.get(node.function)
        if action is None:
            # Unreachable after validation unless the registry was changed afterwards
            raise FlowConfigurationError([f"Action function not registered: {node.function}"])

        try:
            result = await asyncio.wait_for(
                action.execute(session.variables),
                timeout=self.config.action_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning(
                "action_timed_out",
                user_id=session.user_id,
                action=node.function,
                timeout=self.config.action_timeout_seconds,
            )
            action_results_counter.labels(action=node.function, status="timeout").inc()
            return ActionResult.failed()
        except Exception as e:
            log.error("action_raised", user_id=session.user_id, action=node.function, exc_info=True)
            action_results_counter.labels(action=node.function, status="exception").inc()
            raise ActionExecutionError(node.function, f"Action '{node.function}' raised: {e}") from e

        if result.escalate:
            status = "escalate"
        elif result.success:
            status = "success"
        else:
            status = "failure"
        action_results_counter.labels(action=node.function, status=status).inc()
        return result

    def _exit_flow(self, session: SessionState, reason: str, outcome: str) -> str:
        log.info(
            "flow_exited",
            user_id=session.user_id,
            flow=session.active_flow_name,
            node=session.current_node,
            outcome=outcome,
        )
        flow_exits_counter.labels(outcome=outcome).inc()
        session.reset_flow()
        return reason

    # --- Free-form chat ---

    async def _chat(self, session: SessionState, text: str) -> str:
        limit = self.config.llm_history_limit
        session.append_history("user", text, limit)

        documents = await self._retrieve(session.user_id, text)
        if documents is not None and not documents and self.config.no_context_reply:
            reply = self.config.no_context_reply
        else:
            messages = self.context_assembler.build(session.llm_history, documents or ())
            reply = await self._call_llm(messages)

        session.append_history("assistant", reply, limit)
        return reply

    async def _retrieve(self, user_id: str, query: str) -> Optional[List[str]]:
        """Retrieved passages, or None when there is no retriever or it failed."""
        if self.retriever is None:
            return None
        try:
            return await self.retriever.search(user_id, query, self.config.retrieval_top_k)
        except Exception:
            # Grounding is best effort; the model can still answer without it
            log.warning("retrieval_failed", user_id=user_id, exc_info=True)
            return None

    async def _call_llm(self, messages) -> str:
        try:
            response = await asyncio.wait_for(
                self.llm_client.chat(messages),
                timeout=self.config.llm_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            llm_requests_counter.labels(status="timeout").inc()
            raise LLMClientError(
                f"Language model did not answer within {self.config.llm_timeout_seconds}s"
            ) from e
        except LLMClientError:
            raise
        except Exception as e:
            raise LLMClientError(f"Language model call failed: {e}") from e

        content = (response.content or "").strip()
        if not content:
            raise LLMClientError("Language model returned an empty reply")
        return content
