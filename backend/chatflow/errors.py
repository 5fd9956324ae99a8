# /chatflow/errors.py

from typing import List, Optional

# Exceptions raised by the conversation engine. Only these cross the
# orchestrator boundary; the transport layer decides what the user sees.


class ChatflowError(Exception):
    """Base class for all engine errors."""


class FlowConfigurationError(ChatflowError):
    """A flow definition is invalid. Raised at load time, never mid-conversation."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid flow definition: " + "; ".join(self.problems))


class ActionExecutionError(ChatflowError):
    """An action raised instead of returning a result."""

    def __init__(self, action_name: str, message: Optional[str] = None):
        self.action_name = action_name
        super().__init__(message or f"Action '{action_name}' raised an exception")


class LLMClientError(ChatflowError):
    """The language model call failed, timed out, or returned nothing usable."""


class SessionStoreError(ChatflowError):
    """The session backend could not be read or written."""
