# /chatflow/services/llm_client.py

import json
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import openai
import tenacity
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from chatflow.config.persona import AI_SYSTEM_PROMPT
from chatflow.config.settings import Settings, settings
from chatflow.errors import LLMClientError
from chatflow.models.session import HistoryItem
from chatflow.utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from chatflow.utils.metrics import llm_requests_counter

# This service wraps the language model used for free-form replies. It never
# returns an empty reply: every failure surfaces as LLMClientError so the
# caller can decide what the customer sees.

logger = logging.getLogger(__name__)

# tenacity owns retries; the SDK's own retry loop is switched off.
LLM_ATTEMPTS = 3
LLM_MAX_BACKOFF_SECONDS = 4.0


def request_timeout_for(total_timeout: float) -> float:
    """Per-request timeout that lets every attempt and backoff fit inside `total_timeout`."""
    budget = total_timeout - LLM_MAX_BACKOFF_SECONDS * (LLM_ATTEMPTS - 1)
    if budget <= 0:
        budget = total_timeout
    return budget / LLM_ATTEMPTS


class LLMResponse(BaseModel):
    content: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    sources: List[str] = Field(default_factory=list)


class LLMClient(Protocol):
    async def chat(self, history: Sequence[HistoryItem]) -> LLMResponse:
        ...


class OpenAIChatClient:
    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o", temperature: float = 0.7,
                 max_tokens: int = 500, timeout: float = 30.0, system_prompt: str = AI_SYSTEM_PROMPT,
                 client: Optional[AsyncOpenAI] = None, circuit_breaker: Optional[CircuitBreaker] = None):
        if client is None:
            if not api_key:
                raise LLMClientError("OPENAI_API_KEY is not configured")
            client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.circuit_breaker = circuit_breaker or CircuitBreaker("openai")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "OpenAIChatClient":
        return cls(
            api_key=config.openai_api_key,
            model=config.openai_model,
            temperature=config.llm_temperature,
            max_tokens=config.llm_max_tokens,
            timeout=request_timeout_for(config.llm_timeout_seconds),
        )

    def _build_messages(self, history: Sequence[HistoryItem]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt}]
        messages.extend({"role": item.role, "content": item.content} for item in history)
        return messages

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((openai.APIConnectionError, openai.APITimeoutError)),
        stop=tenacity.stop_after_attempt(LLM_ATTEMPTS),
        wait=tenacity.wait_exponential(multiplier=1, min=0.5, max=LLM_MAX_BACKOFF_SECONDS),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _create_completion(self, messages: List[Dict[str, str]]) -> Any:
        return await self.circuit_breaker.call(
            self.client.chat.completions.create,
            model=self.model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    async def chat(self, history: Sequence[HistoryItem]) -> LLMResponse:
        messages = self._build_messages(history)
        try:
            response = await self._create_completion(messages)
        except CircuitOpenError as e:
            llm_requests_counter.labels(status="circuit_open").inc()
            raise LLMClientError(str(e)) from e
        except openai.OpenAIError as e:
            logger.error(f"OpenAI chat completion failed: {e}")
            llm_requests_counter.labels(status="error").inc()
            raise LLMClientError("Failed to generate AI response") from e

        raw = response.choices[0].message.content if response.choices else None
        reply = self.parse_reply(raw)
        llm_requests_counter.labels(status="success").inc()
        return reply

    @staticmethod
    def parse_reply(raw: Optional[str]) -> LLMResponse:
        """Reads the JSON reply; plain text is accepted as the content itself."""
        if not raw or not raw.strip():
            llm_requests_counter.labels(status="empty").inc()
            raise LLMClientError("Language model returned an empty reply")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Language model ignored JSON mode; using raw text as the reply")
            return LLMResponse(content=raw.strip())

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, str) or not content.strip():
            llm_requests_counter.labels(status="empty").inc()
            raise LLMClientError("Language model reply has no content")

        confidence = data.get("confidence", 0.5)
        if not isinstance(confidence, (int, float)):
            confidence = 0.5
        sources = data.get("sources")
        sources = [str(s) for s in sources if s] if isinstance(sources, list) else []
        return LLMResponse(content=content.strip(), confidence=min(max(float(confidence), 0.0), 1.0), sources=sources)
