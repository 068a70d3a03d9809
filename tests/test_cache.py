import redis

from app.services.cache_service import (
    NOTIFICATION_QUEUE_LIMIT,
    MemoryCache,
    RedisCache,
    drain_notifications,
    push_notification,
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_values_expire_after_ttl():
    clock = FakeClock()
    cache = MemoryCache(prefix="app", clock=clock)

    cache.set("session", {"user": "u1"}, ttl=10)
    assert cache.get("session") == {"user": "u1"}
    assert cache.exists("session")
    assert cache.ttl("session") == 10

    clock.now += 10
    assert cache.get("session") is None
    assert not cache.exists("session")
    assert cache.ttl("session") is None


def test_set_without_ttl_persists_and_delete_removes():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    cache.set("flag", True)
    clock.now += 10_000
    assert cache.get("flag") is True
    assert cache.ttl("flag") is None

    assert cache.delete("flag") is True
    assert cache.delete("flag") is False


def test_expire_and_increment():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    assert cache.expire("missing", 5) is False
    assert cache.increment("hits", ttl=30) == 1
    assert cache.increment("hits", 4) == 5
    assert cache.ttl("hits") == 30

    clock.now += 31
    assert cache.increment("hits") == 1


def test_expired_counters_are_swept_on_write():
    clock = FakeClock()
    cache = MemoryCache(clock=clock, sweep_every=100)

    for index in range(500):
        cache.increment(f"rate:api:10.0.0.{index}:1", ttl=1)
    assert len(cache._entries) == 500

    clock.now += 2
    for index in range(500):
        cache.increment(f"rate:api:10.0.0.{index}:2", ttl=1)
    assert len(cache._entries) == 500
    assert all(key.endswith(":2") for key in cache._entries)

    cache.set("pinned", "kept")
    clock.now += 2
    for index in range(100):
        cache.increment(f"rate:api:10.0.0.{index}:3", ttl=1)
    assert cache.get("pinned") == "kept"


def test_hash_and_list_helpers():
    cache = MemoryCache()

    cache.hash_set("user:1", "name", "Ada")
    cache.hash_set("user:1", "role", "agent")
    assert cache.hash_get("user:1", "name") == "Ada"
    assert cache.hash_get_all("user:1") == {"name": "Ada", "role": "agent"}
    assert cache.hash_get_all("user:2") == {}

    for value in ("a", "b", "c", "d"):
        cache.list_push("events", value)
    assert cache.list_range("events") == ["d", "c", "b", "a"]
    assert cache.list_range("events", 0, 1) == ["d", "c"]
    assert cache.list_trim("events", 0, 2) is True
    assert cache.list_length("events") == 3
    assert cache.list_range("events", 0, -2) == ["d", "c"]


def test_notifications_are_capped_and_drained_oldest_first():
    cache = MemoryCache()

    for index in range(NOTIFICATION_QUEUE_LIMIT + 5):
        push_notification(cache, "u1", {"event": "ping", "data": {"n": index}})

    drained = drain_notifications(cache, "u1")
    assert len(drained) == NOTIFICATION_QUEUE_LIMIT
    assert drained[0]["data"]["n"] == 5
    assert drained[-1]["data"]["n"] == NOTIFICATION_QUEUE_LIMIT + 4
    assert drain_notifications(cache, "u1") == []


class BrokenRedis:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")

        return fail


def test_redis_cache_fails_open():
    cache = RedisCache("redis://localhost:6379/0", prefix="app", client=BrokenRedis())

    assert cache.get("key") is None
    assert cache.set("key", 1) is False
    assert cache.increment("counter", ttl=10) is None
    assert cache.list_range("events") == []
    assert cache.hash_get_all("user:1") == {}
    assert cache.ping() is False


class RecordingRedis:
    def __init__(self):
        self.values: dict[str, int] = {}
        self.expiries: dict[str, int] = {}
        self.commands: list[tuple] = []

    def incrby(self, key, amount):
        self.commands.append(("incrby", key, amount))
        self.values[key] = self.values.get(key, 0) + amount
        return self.values[key]

    def set(self, key, value, ex=None, nx=False):
        self.commands.append(("set", key, value, ex, nx))
        if nx and key in self.values:
            return None
        self.values[key] = int(value)
        if ex:
            self.expiries[key] = ex
        return True

    def pipeline(self):
        return RecordingPipeline(self)


class RecordingPipeline:
    def __init__(self, client: RecordingRedis):
        self.client = client
        self.queued: list[tuple] = []

    def set(self, *args, **kwargs):
        self.queued.append(("set", args, kwargs))

    def incrby(self, *args, **kwargs):
        self.queued.append(("incrby", args, kwargs))

    def execute(self):
        return [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.queued]


def test_redis_increment_seeds_expiry_before_counting():
    client = RecordingRedis()
    cache = RedisCache("redis://localhost:6379/0", prefix="app", client=client)

    # A refund on a missing key still carries the window expiry.
    assert cache.increment("rate:login:1.2.3.4", -1, ttl=60) == -1
    assert client.expiries == {"app:rate:login:1.2.3.4": 60}
    assert client.commands[0] == ("set", "app:rate:login:1.2.3.4", 0, 60, True)

    assert cache.increment("rate:login:1.2.3.4", 2, ttl=60) == 1
    assert cache.increment("plain") == 1
    assert client.commands[-1] == ("incrby", "app:plain", 1)
    assert "app:plain" not in client.expiries
