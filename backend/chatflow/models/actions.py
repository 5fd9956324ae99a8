# /chatflow/models/actions.py

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    """Outcome of a flow action. Escalation wins over success when both are set."""
    success: bool = Field(default=False, description="Action completed; follow next.success")
    escalate: bool = Field(default=False, description="Hand the conversation to a human")

    @classmethod
    def ok(cls) -> "ActionResult":
        return cls(success=True)

    @classmethod
    def failed(cls) -> "ActionResult":
        return cls(success=False)

    @classmethod
    def escalated(cls) -> "ActionResult":
        return cls(escalate=True)
