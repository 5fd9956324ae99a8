# backend/tests/unit/test_context_and_locks.py
import asyncio
import pytest

from chatflow.models.actions import ActionResult
from chatflow.models.session import HistoryItem, SessionState
from chatflow.services.context import ContextAssembler
from chatflow.utils.locks import UserLockRegistry
from chatflow.workflows.actions import ActionRegistry, FunctionAction, GetOrderStatusAction


def history(n):
    return [HistoryItem(role="user" if i % 2 == 0 else "assistant", content=f"m{i}") for i in range(n)]


# --- ContextAssembler ---

def test_bound_keeps_most_recent_entries():
    assembler = ContextAssembler(history_limit=3)
    assert [h.content for h in assembler.bound(history(5))] == ["m2", "m3", "m4"]


@pytest.mark.parametrize("role", ["system", "assistant"])
def test_documents_are_injected_first_with_configured_role(role):
    assembler = ContextAssembler(history_limit=10, context_role=role)

    messages = assembler.build(history(2), ["Returns accepted within 7 days.", "   "])

    assert [(m.role, m.content) for m in messages] == [
        (role, "Returns accepted within 7 days."),
        ("user", "m0"),
        ("assistant", "m1"),
    ]


def test_unknown_context_role_is_rejected():
    with pytest.raises(ValueError):
        ContextAssembler(context_role="tool")


# --- SessionState ---

def test_append_history_truncates_to_limit():
    session = SessionState(user_id="u1")
    for i in range(7):
        session.append_history("user", f"q{i}", limit=4)
    assert [h.content for h in session.llm_history] == ["q3", "q4", "q5", "q6"]


def test_reset_flow_keeps_history():
    session = SessionState(user_id="u1")
    session.append_history("user", "hello", limit=10)
    session.start_flow("track_order", "ask_order_id")
    session.variables["order_id"] = "A123"
    session.retries["get_order_status"] = 1

    session.reset_flow()

    assert not session.in_flow
    assert (session.current_node, session.variables, session.retries) == (None, {}, {})
    assert len(session.llm_history) == 1


# --- Actions ---

@pytest.mark.asyncio
async def test_get_order_status_action():
    action = GetOrderStatusAction(orders={"A123": "Shipped"})

    variables = {"order_id": " A123 "}
    assert await action.execute(variables) == ActionResult.ok()
    assert variables["status"] == "Shipped"

    assert await action.execute({"order_id": "agent"}) == ActionResult.escalated()
    assert await action.execute({"order_id": "Z9"}) == ActionResult.failed()
    assert await action.execute({}) == ActionResult.failed()


@pytest.mark.asyncio
async def test_registry_decorator_and_duplicates():
    registry = ActionRegistry()

    @registry.function()
    def always_ok(variables):
        return {"success": True}

    assert "always_ok" in registry
    assert await registry.get("always_ok").execute({}) == ActionResult.ok()
    with pytest.raises(ValueError, match="already registered"):
        registry.register(FunctionAction("always_ok", always_ok))


@pytest.mark.asyncio
async def test_function_action_rejects_unexpected_return_type():
    action = FunctionAction("broken", lambda variables: "yes")
    with pytest.raises(TypeError):
        await action.execute({})


# --- UserLockRegistry ---

@pytest.mark.asyncio
async def test_same_user_is_serialized_other_users_are_not():
    locks = UserLockRegistry()
    events = []

    async def work(user, label, delay):
        async with locks.acquire(user):
            events.append(f"{label}-start")
            await asyncio.sleep(delay)
            events.append(f"{label}-end")

    await asyncio.gather(work("u1", "a", 0.05), work("u1", "b", 0), work("u2", "c", 0))

    assert events.index("a-end") < events.index("b-start")
    assert events.index("c-end") < events.index("a-end")
    assert len(locks) == 0
