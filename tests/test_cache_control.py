import pytest

from think_tank.core.cache import TTLCache
from think_tank.core.errors import RequestValidationError
from think_tank.services.cache_control import CacheControl, composite_key


class FakeSnapshots:
    def __init__(self):
        self.persona_calls = 0
        self.message_limits: list[int] = []

    async def get_persona(self, persona_id):
        self.persona_calls += 1
        if persona_id == "p-alice":
            return {"id": "p-alice", "name": "Alice"}
        return None

    async def get_conversation_messages(self, conversation_id, limit=50):
        self.message_limits.append(limit)
        if conversation_id == "c1":
            return [{"role": "user", "content": "hi"}]
        return []


@pytest.fixture
def snapshots() -> FakeSnapshots:
    return FakeSnapshots()


@pytest.fixture
def control(clock, snapshots) -> CacheControl:
    return CacheControl(TTLCache(clock=clock), snapshots, sample_keys=2)


def test_composite_key():
    assert composite_key("u1", "c1", "k") == "user:u1:conv:c1:k"
    assert composite_key(None, "c1", "k") == "conv:c1:k"
    assert composite_key(key="k") == "k"


async def test_set_then_get(control):
    response = await control.handle({"action": "set", "key": "k", "value": {"a": 1}, "userId": "u1"})
    assert response == {"success": True, "data": {"key": "user:u1:k", "ttl": 900}}
    assert await control.handle({"action": "get", "key": "k", "userId": "u1"}) == {"success": True, "data": {"a": 1}}


async def test_get_miss(control):
    assert await control.handle({"action": "get", "key": "nothing"}) == {"success": False, "data": None}


async def test_default_ttl_is_fifteen_minutes(control, clock):
    await control.handle({"action": "set", "key": "k", "value": 1})
    clock.advance(899)
    assert (await control.handle({"action": "get", "key": "k"}))["success"]
    clock.advance(2)
    assert not (await control.handle({"action": "get", "key": "k"}))["success"]


async def test_persona_fetch_through_fills_cache(control, snapshots):
    first = await control.handle({"action": "get", "key": "persona:p-alice"})
    second = await control.handle({"action": "get", "key": "persona:p-alice"})
    assert first == second == {"success": True, "data": {"id": "p-alice", "name": "Alice"}}
    assert snapshots.persona_calls == 1


async def test_conversation_fetch_through_uses_snapshot_limit(control, snapshots):
    response = await control.handle({"action": "get", "key": "conversation:c1", "userId": "u1"})
    assert response["data"] == [{"role": "user", "content": "hi"}]
    assert snapshots.message_limits == [50]
    stats = await control.handle({"action": "stats"})
    assert stats["stats"]["keys"] == ["user:u1:conversation:c1"]


async def test_fetch_through_miss(control):
    assert await control.handle({"action": "get", "key": "persona:nobody"}) == {"success": False, "data": None}
    assert await control.handle({"action": "get", "key": "conversation:empty"}) == {"success": False, "data": None}


async def test_delete_key_and_pattern(control):
    for key in ("a:1", "a:2", "b:1"):
        await control.handle({"action": "set", "key": key, "value": key, "userId": "u1"})
    assert await control.handle({"action": "delete", "key": "b:1", "userId": "u1"}) == {
        "success": True,
        "data": {"deleted": True},
    }
    response = await control.handle({"action": "delete", "pattern": "a:*", "userId": "u1"})
    assert response["data"] == {"deletedCount": 2}


async def test_clear_scoped_and_global(control):
    await control.handle({"action": "set", "key": "x", "value": 1, "userId": "u1", "conversationId": "c1"})
    await control.handle({"action": "set", "key": "y", "value": 2, "userId": "u1", "conversationId": "c2"})
    await control.handle({"action": "set", "key": "z", "value": 3, "userId": "u2"})

    scoped = await control.handle({"action": "clear", "userId": "u1", "conversationId": "c1"})
    assert scoped["data"] == {"clearedCount": 1}
    everything = await control.handle({"action": "clear"})
    assert everything["data"] == {"clearedCount": 2}


async def test_stats_caps_key_sample(control):
    for key in "abc":
        await control.handle({"action": "set", "key": key, "value": "v"})
    stats = (await control.handle({"action": "stats"}))["stats"]
    assert stats["size"] == 3
    assert stats["keys"] == ["a", "b"]
    assert stats["memoryUsage"] == 9


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "explode"},
        {"action": "get"},
        {"action": "set", "key": "k"},
        {"action": "delete"},
        {"action": "set", "key": "k", "value": 1, "ttl": -5},
    ],
)
async def test_invalid_requests(control, payload):
    with pytest.raises(RequestValidationError):
        await control.handle(payload)
