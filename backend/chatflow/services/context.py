# /chatflow/services/context.py

from typing import List, Protocol, Sequence

from chatflow.models.session import HistoryItem

# Assembles what the language model sees on the free-form path: retrieved
# knowledge-base passages followed by the most recent conversation turns.


class KnowledgeRetriever(Protocol):
    """Vector search over the business's knowledge base (crawled pages, FAQs)."""

    async def search(self, user_id: str, query: str, top_k: int) -> List[str]:
        ...


class ContextAssembler:
    def __init__(self, history_limit: int = 10, context_role: str = "system"):
        if context_role not in ("system", "assistant"):
            raise ValueError(f"Unsupported context role: {context_role}")
        self.history_limit = history_limit
        self.context_role = context_role

    def bound(self, history: Sequence[HistoryItem]) -> List[HistoryItem]:
        return list(history[-self.history_limit:])

    def build(self, history: Sequence[HistoryItem], documents: Sequence[str] = ()) -> List[HistoryItem]:
        """
        Passages come first so the latest user message stays the final entry.
        Passages are never written back into the stored history.
        """
        context = [
            HistoryItem(role=self.context_role, content=doc.strip())
            for doc in documents
            if doc and doc.strip()
        ]
        return context + self.bound(history)
