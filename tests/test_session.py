import json

from medgate.prompt import SESSION_SYSTEM_PROMPT
from medgate.schemas import ChatMessage
from medgate.session import SessionStore, build_session_store_from_env


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value

    def setex(self, key, ttl, value):
        self.ttls[key] = ttl
        self.store[key] = value

    def delete(self, key):
        self.store.pop(key, None)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def user(text):
    return ChatMessage(role="user", content=text)


def assistant(text):
    return ChatMessage(role="assistant", content=text)


def test_session_store_memory_fallback(monkeypatch):
    monkeypatch.delenv("REDIS_HOST", raising=False)

    store = build_session_store_from_env()
    assert store.redis_enabled is False

    store.append("s1", user("hello"))
    store.append("s1", assistant("hi"))

    history = store.get("s1")
    assert [m.role for m in history] == ["system", "user", "assistant"]
    assert history[0].content == SESSION_SYSTEM_PROMPT


def test_get_creates_seeded_session():
    store = SessionStore()

    history = store.get("nonexistent")

    assert history == [ChatMessage(role="system", content=SESSION_SYSTEM_PROMPT)]
    assert len(store) == 1


def test_session_store_separate_sessions():
    store = SessionStore()

    store.append("s1", user("hello"))
    store.append("s2", user("hi"))

    assert len(store.get("s1")) == 2
    assert len(store.get("s2")) == 2


def test_session_store_preserves_order_and_content():
    store = SessionStore()
    store.append("s1", user("hello"))
    store.append("s1", assistant("hi"))

    history = store.get("s1")

    assert history[1].content == "hello"
    assert history[2].content == "hi"


def test_get_returns_a_copy():
    store = SessionStore()
    store.get("s1").append(user("sneaky"))
    assert len(store.get("s1")) == 1


def test_idle_sessions_expire():
    clock = FakeClock()
    store = SessionStore(ttl_s=60, clock=clock)
    store.append("s1", user("hello"))

    clock.now += 61
    history = store.get("s1")

    assert len(history) == 1  # fresh seed only


def test_touch_keeps_session_alive():
    clock = FakeClock()
    store = SessionStore(ttl_s=60, clock=clock)
    store.append("s1", user("hello"))

    clock.now += 45
    store.get("s1")
    clock.now += 45

    assert len(store.get("s1")) == 2


def test_least_recently_used_evicted_beyond_cap():
    store = SessionStore(max_entries=2)
    store.append("a", user("1"))
    store.append("b", user("2"))
    store.get("a")
    store.append("c", user("3"))

    assert len(store) == 2
    assert len(store.get("a")) == 2
    # b was the oldest and got dropped
    assert len(store.get("b")) == 1


def test_clear_drops_history():
    store = SessionStore()
    store.append("s1", user("hello"))
    store.clear("s1")
    assert len(store) == 0
    assert len(store.get("s1")) == 1


def test_lock_is_reentrant_for_same_session():
    store = SessionStore()
    with store.lock("s1"):
        store.append("s1", user("hello"))
        assert len(store.get("s1")) == 2


def test_redis_backend_roundtrip():
    fake = FakeRedis()
    store = SessionStore(redis_client=fake, ttl_s=300)
    assert store.redis_enabled is True

    store.append("s1", user("hello"))
    store.append("s1", assistant("hi"))

    raw = json.loads(fake.store["session:s1"])
    assert [m["role"] for m in raw] == ["system", "user", "assistant"]
    assert fake.ttls["session:s1"] == 300
    assert store.get("s1")[2] == assistant("hi")


def test_redis_backend_without_ttl_uses_set():
    fake = FakeRedis()
    store = SessionStore(redis_client=fake, ttl_s=0)
    store.append("s1", user("hello"))
    assert "session:s1" in fake.store
    assert fake.ttls == {}


def test_redis_backend_clear():
    fake = FakeRedis()
    store = SessionStore(redis_client=fake)
    store.append("s1", user("hello"))
    store.clear("s1")
    assert fake.store == {}


def test_expiry_drops_only_idle_sessions():
    clock = FakeClock()
    store = SessionStore(ttl_s=60, clock=clock)
    store.append("old", user("1"))
    clock.now += 40
    store.append("recent", user("2"))

    clock.now += 30
    store.get("other")

    assert len(store) == 2
    assert len(store.get("recent")) == 2
