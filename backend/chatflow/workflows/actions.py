# /chatflow/workflows/actions.py

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from chatflow.models.actions import ActionResult
from chatflow.workflows.definitions import DEMO_ORDERS

# Backend operations that flow action nodes can invoke. Actions are looked up
# by name in an explicit registry so unknown names can be rejected when a
# flow definition is loaded, not when a customer reaches the node.

logger = logging.getLogger(__name__)

ActionFunc = Callable[[Dict[str, str]], Union[ActionResult, Dict[str, Any], Awaitable[Any]]]


class Action(ABC):
    """A named operation run with the flow's variables. May mutate them in place."""
    name: str

    @abstractmethod
    async def execute(self, variables: Dict[str, str]) -> ActionResult:
        ...


def coerce_result(value: Any) -> ActionResult:
    if isinstance(value, ActionResult):
        return value
    if isinstance(value, dict):
        return ActionResult.model_validate(value)
    raise TypeError(f"Action returned {type(value).__name__}, expected ActionResult or dict")


class FunctionAction(Action):
    """Adapts a plain (sync or async) function to the Action interface."""

    def __init__(self, name: str, func: ActionFunc):
        self.name = name
        self.func = func

    async def execute(self, variables: Dict[str, str]) -> ActionResult:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func(variables)
        else:
            # Sync functions may block (database drivers); keep them off the event loop
            result = await asyncio.to_thread(self.func, variables)
        if inspect.isawaitable(result):
            result = await result
        return coerce_result(result)


class ActionRegistry:
    def __init__(self, actions: Iterable[Action] = ()):
        self._actions: Dict[str, Action] = {}
        for action in actions:
            self.register(action)

    def register(self, action: Action) -> Action:
        if not getattr(action, "name", None):
            raise ValueError("Actions must have a non-empty name")
        if action.name in self._actions:
            raise ValueError(f"Action '{action.name}' is already registered")
        self._actions[action.name] = action
        logger.debug(f"Registered flow action '{action.name}'")
        return action

    def function(self, name: Optional[str] = None):
        """Decorator registering a plain function as an action."""
        def decorator(func: ActionFunc) -> ActionFunc:
            self.register(FunctionAction(name or func.__name__, func))
            return func
        return decorator

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def names(self) -> List[str]:
        return list(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)


class GetOrderStatusAction(Action):
    """
    Looks up `variables["order_id"]` and writes the result to `variables["status"]`.

    Ids listed in `escalation_ids` ask for a human instead of a lookup.
    """
    name = "get_order_status"

    def __init__(self, orders: Optional[Dict[str, str]] = None, escalation_ids: Iterable[str] = ("AGENT",)):
        self.orders = dict(DEMO_ORDERS if orders is None else orders)
        self.escalation_ids = {i.upper() for i in escalation_ids}

    async def execute(self, variables: Dict[str, str]) -> ActionResult:
        order_id = variables.get("order_id", "").strip()
        if order_id.upper() in self.escalation_ids:
            return ActionResult.escalated()

        status = self.orders.get(order_id)
        if status is None:
            return ActionResult.failed()

        variables["status"] = status
        return ActionResult.ok()


def default_registry() -> ActionRegistry:
    return ActionRegistry([GetOrderStatusAction()])
