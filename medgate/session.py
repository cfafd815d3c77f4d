import json
import threading
import time
import zlib
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

import redis

from .config import get_settings
from .metrics import ACTIVE_SESSIONS
from .prompt import SESSION_SYSTEM_PROMPT
from .schemas import ChatMessage

LOCK_SHARDS = 64


def _key(session_id: str) -> str:
    return f"session:{session_id}"


def _seed() -> List[ChatMessage]:
    return [ChatMessage(role="system", content=SESSION_SYSTEM_PROMPT)]


@dataclass
class _Entry:
    messages: List[ChatMessage] = field(default_factory=_seed)
    touched_at: float = 0.0


class SessionStore:
    """
    Conversation history keyed by caller-supplied session id.

    Every history starts with the system prompt. In-memory entries expire
    after `ttl_s` seconds idle (0 disables) and the least recently used
    ones are dropped beyond `max_entries`. With a redis client the history
    lives under `session:<id>` as a JSON list and redis handles expiry.

    `lock(session_id)` serializes whole turns for one session; locks are
    striped, so unrelated sessions may occasionally share one.
    """

    def __init__(
        self,
        redis_client: Optional["redis.Redis"] = None,
        ttl_s: int = 86400,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = redis_client
        self.redis_enabled = redis_client is not None
        self.ttl = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._memory_store: "OrderedDict[str, _Entry]" = OrderedDict()
        self._guard = threading.Lock()
        self._locks = [threading.RLock() for _ in range(LOCK_SHARDS)]

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        shard = self._locks[zlib.crc32(session_id.encode("utf-8")) % LOCK_SHARDS]
        with shard:
            yield

    # ---- redis backend ----

    def _redis_load(self, session_id: str) -> List[ChatMessage]:
        data = self._client.get(_key(session_id))
        if not data:
            return _seed()
        return [ChatMessage(**m) for m in json.loads(data)]

    def _redis_save(self, session_id: str, history: List[ChatMessage]) -> None:
        payload = json.dumps([m.model_dump() for m in history])
        if self.ttl > 0:
            self._client.setex(_key(session_id), self.ttl, payload)
        else:
            self._client.set(_key(session_id), payload)

    # ---- memory backend ----

    def _expire(self, now: float) -> None:
        if self.ttl <= 0:
            return
        # entries are kept in touch order, oldest first
        while self._memory_store:
            sid, entry = next(iter(self._memory_store.items()))
            if now - entry.touched_at <= self.ttl:
                break
            del self._memory_store[sid]

    def _trim(self) -> None:
        # most recently touched entries sit at the end
        while self.max_entries > 0 and len(self._memory_store) > self.max_entries:
            self._memory_store.popitem(last=False)

    def _entry(self, session_id: str) -> _Entry:
        now = self._clock()
        self._expire(now)
        entry = self._memory_store.get(session_id)
        if entry is None:
            entry = _Entry()
            self._memory_store[session_id] = entry
        entry.touched_at = now
        self._memory_store.move_to_end(session_id)
        self._trim()
        ACTIVE_SESSIONS.set(len(self._memory_store))
        return entry

    # ---- public API ----

    def get(self, session_id: str) -> List[ChatMessage]:
        with self.lock(session_id):
            if self.redis_enabled:
                history = self._redis_load(session_id)
                self._redis_save(session_id, history)
                return history
            with self._guard:
                return list(self._entry(session_id).messages)

    def append(self, session_id: str, message: ChatMessage) -> None:
        with self.lock(session_id):
            if self.redis_enabled:
                history = self._redis_load(session_id)
                history.append(message)
                self._redis_save(session_id, history)
                return
            with self._guard:
                self._entry(session_id).messages.append(message)

    def clear(self, session_id: str) -> None:
        with self.lock(session_id):
            if self.redis_enabled:
                self._client.delete(_key(session_id))
                return
            with self._guard:
                self._memory_store.pop(session_id, None)
                ACTIVE_SESSIONS.set(len(self._memory_store))

    def __len__(self) -> int:
        with self._guard:
            return len(self._memory_store)


def build_session_store_from_env() -> SessionStore:
    settings = get_settings()

    client = None
    if settings.redis_host:
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            decode_responses=True,
        )

    return SessionStore(
        redis_client=client,
        ttl_s=settings.session_ttl_s,
        max_entries=settings.session_max_entries,
    )
