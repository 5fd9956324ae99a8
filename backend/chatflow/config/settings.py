# /chatflow/config/settings.py

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App Behavior
    environment: str = Field(default="production")
    log_level: str = "INFO"

    # Language model
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 500
    llm_history_limit: int = 10
    llm_timeout_seconds: float = 30.0

    # Flow execution
    action_timeout_seconds: float = 10.0
    max_flow_steps: int = 25
    flow_definition_path: Optional[str] = None

    # Sessions
    session_backend: str = "memory"
    session_ttl_seconds: int = 86400
    redis_url: str = "redis://localhost:6379"
    session_key_prefix: str = "chatflow:session:"

    # Retrieval grounding
    context_role: str = "system"
    retrieval_top_k: int = 3
    no_context_reply: Optional[str] = None

    # Transport limits
    max_message_length: int = 4096

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ---------------- Validators ---------------- #

    @field_validator("context_role")
    @classmethod
    def context_role_must_be_supported(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("system", "assistant"):
            raise ValueError("CONTEXT_ROLE must be 'system' or 'assistant'")
        return v

    @field_validator("session_backend")
    @classmethod
    def session_backend_must_be_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("SESSION_BACKEND must be 'memory' or 'redis'")
        return v

    @field_validator("llm_history_limit", "max_flow_steps")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("History limit and step limit must be at least 1")
        return v


settings = Settings()
