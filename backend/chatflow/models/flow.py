# /chatflow/models/flow.py

from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatflow.errors import FlowConfigurationError

# Flow graphs are PURE DATA. Each node type carries only the fields it needs,
# so an action's branching record can never be mistaken for a plain node id.

ERROR_EXIT_NODE = "error_exit"


class _FlowNodeBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class TriggerNode(_FlowNodeBase):
    """Entry point of a flow, matched by phrase containment."""
    type: Literal["trigger"] = "trigger"
    match_phrases: List[str] = Field(..., description="Phrases matched case-insensitively as substrings")
    next: str = Field(..., description="First node of the flow")

    @field_validator("match_phrases")
    @classmethod
    def normalize_phrases(cls, v: List[str]) -> List[str]:
        # Lowercase once here so matching only has to lowercase the message.
        # Surrounding spaces are part of the phrase ("hi " must not match "this").
        phrases = [p.lower() for p in v if p and p.strip()]
        return list(dict.fromkeys(phrases))


class PromptNode(_FlowNodeBase):
    """Sends templated text; optionally captures the next message into a variable."""
    type: Literal["prompt"] = "prompt"
    text: str
    expects: Optional[str] = Field(default=None, description="Variable that receives the next inbound message")
    next: str


class ActionNext(_FlowNodeBase):
    success: str
    error: str
    human: str


class ActionNode(_FlowNodeBase):
    """Invokes a registered backend action and branches on its result."""
    type: Literal["action"] = "action"
    function: str
    retries: int = Field(default=0, ge=0, description="Failures tolerated before error_exit")
    next: ActionNext


class ExitNode(_FlowNodeBase):
    """Terminal node; its reason becomes the reply."""
    type: Literal["exit"] = "exit"
    reason: str


FlowNode = Annotated[
    Union[TriggerNode, PromptNode, ActionNode, ExitNode],
    Field(discriminator="type"),
]


class FlowDefinition(BaseModel):
    """
    A static graph of flow nodes keyed by node id.

    Node order is the insertion order of the source mapping and is significant:
    trigger matching walks the triggers in that order.
    """
    model_config = ConfigDict(frozen=True)

    nodes: Dict[str, FlowNode]

    def get(self, node_id: Optional[str]) -> Optional[FlowNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def triggers(self) -> List[Tuple[str, TriggerNode]]:
        return [(node_id, node) for node_id, node in self.nodes.items() if isinstance(node, TriggerNode)]

    def action_functions(self) -> List[str]:
        names = [node.function for node in self.nodes.values() if isinstance(node, ActionNode)]
        return list(dict.fromkeys(names))

    @property
    def error_exit(self) -> ExitNode:
        node = self.nodes.get(ERROR_EXIT_NODE)
        if not isinstance(node, ExitNode):
            raise FlowConfigurationError([f"Node '{ERROR_EXIT_NODE}' must be an exit node"])
        return node


def node_references(node: FlowNode) -> List[Tuple[str, str]]:
    """Returns (field, target node id) pairs for every outgoing edge of a node."""
    if isinstance(node, (TriggerNode, PromptNode)):
        return [("next", node.next)]
    if isinstance(node, ActionNode):
        return [
            ("next.success", node.next.success),
            ("next.error", node.next.error),
            ("next.human", node.next.human),
        ]
    return []
