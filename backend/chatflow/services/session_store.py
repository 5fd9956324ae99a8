# /chatflow/services/session_store.py

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import ValidationError

from chatflow.config.settings import Settings, settings
from chatflow.errors import SessionStoreError
from chatflow.models.session import SessionState
from chatflow.utils.metrics import sessions_evicted_counter

# Session persistence for the orchestrator. Stores hand out copies: the
# orchestrator mutates its copy while handling a message and writes it back
# only once a reply has been produced, so a failed message leaves the stored
# session untouched.

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[SessionState]:
        ...

    @abstractmethod
    async def set(self, session: SessionState) -> None:
        ...

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemorySessionStore(SessionStore):
    """Process-local store with idle-timeout eviction. `ttl_seconds=None` disables eviction."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._clock = clock
        self._sessions: Dict[str, SessionState] = {}

    def _is_expired(self, session: SessionState, now: datetime) -> bool:
        return self.ttl is not None and now - session.last_active_at > self.ttl

    async def get(self, user_id: str) -> Optional[SessionState]:
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if self._is_expired(session, self._clock()):
            del self._sessions[user_id]
            sessions_evicted_counter.inc()
            logger.info(f"Evicted idle session for user {user_id}")
            return None
        return session.model_copy(deep=True)

    async def set(self, session: SessionState) -> None:
        self._sessions[session.user_id] = session.model_copy(deep=True)

    async def clear(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    async def evict_expired(self) -> int:
        """Drops every idle session. Meant to be run periodically by the host process."""
        now = self._clock()
        expired = [uid for uid, s in self._sessions.items() if self._is_expired(s, now)]
        for user_id in expired:
            del self._sessions[user_id]
        if expired:
            sessions_evicted_counter.inc(len(expired))
            logger.info(f"Evicted {len(expired)} idle sessions")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Sessions as JSON strings under `<prefix><user_id>`; redis expires idle keys."""

    def __init__(self, redis_client, ttl_seconds: int = 86400, key_prefix: str = "chatflow:session:"):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = 86400, key_prefix: str = "chatflow:session:") -> "RedisSessionStore":
        pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
        return cls(redis.Redis(connection_pool=pool), ttl_seconds, key_prefix)

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    async def get(self, user_id: str) -> Optional[SessionState]:
        try:
            raw = await self.redis.get(self._key(user_id))
        except RedisError as e:
            raise SessionStoreError(f"Failed to load session for {user_id}: {e}") from e
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError as e:
            # A record written by an incompatible version; start the user over
            logger.warning(f"Discarding unreadable session for {user_id}: {e}")
            return None

    async def set(self, session: SessionState) -> None:
        try:
            await self.redis.setex(self._key(session.user_id), self.ttl_seconds, session.model_dump_json())
        except RedisError as e:
            raise SessionStoreError(f"Failed to save session for {session.user_id}: {e}") from e

    async def clear(self, user_id: str) -> None:
        try:
            await self.redis.delete(self._key(user_id))
        except RedisError as e:
            raise SessionStoreError(f"Failed to clear session for {user_id}: {e}") from e


def create_session_store(config: Settings = settings, redis_client=None) -> SessionStore:
    if config.session_backend == "redis":
        if redis_client is not None:
            return RedisSessionStore(redis_client, config.session_ttl_seconds, config.session_key_prefix)
        return RedisSessionStore.from_url(config.redis_url, config.session_ttl_seconds, config.session_key_prefix)
    return InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
