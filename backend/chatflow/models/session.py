# /chatflow/models/session.py

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryItem(BaseModel):
    """One role-tagged entry of the free-form chat history."""
    role: Literal["user", "assistant", "system"]
    content: str


class SessionState(BaseModel):
    """
    Per-user conversation state.

    Tracks the flow in progress (if any), the cursor into the flow graph,
    captured variables, per-action retry counters and the rolling chat
    history used by the free-form path. Owned by the orchestrator; callers
    outside the engine must not mutate it.
    """
    user_id: str = Field(..., description="External user identifier (phone number, chat id)")
    active_flow_name: Optional[str] = Field(default=None, description="Trigger id that started the current flow")
    current_node: Optional[str] = Field(default=None, description="Cursor into the flow graph")
    variables: Dict[str, str] = Field(default_factory=dict, description="Values captured by prompts and actions")
    retries: Dict[str, int] = Field(default_factory=dict, description="Failure count per action function")
    llm_history: List[HistoryItem] = Field(default_factory=list, description="Bounded free-form chat history")
    created_at: datetime = Field(default_factory=_utcnow)
    last_active_at: datetime = Field(default_factory=_utcnow)

    @property
    def in_flow(self) -> bool:
        return self.active_flow_name is not None

    def start_flow(self, trigger_id: str, first_node: str) -> None:
        self.active_flow_name = trigger_id
        self.current_node = first_node
        self.variables = {}
        self.retries = {}

    def reset_flow(self) -> None:
        """Tears down the flow instance. Chat history is left untouched."""
        self.active_flow_name = None
        self.current_node = None
        self.variables = {}
        self.retries = {}

    def append_history(self, role: str, content: str, limit: int) -> None:
        self.llm_history.append(HistoryItem(role=role, content=content))
        if len(self.llm_history) > limit:
            self.llm_history = self.llm_history[-limit:]

    def touch(self) -> None:
        self.last_active_at = _utcnow()
