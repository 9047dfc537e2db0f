from datetime import datetime, timedelta, timezone

from think_tank.core.models import CostRecord, Persona, UsageStats
from think_tank.services.cache_control import CacheControl
from think_tank.core.cache import TTLCache
from think_tank.storage.cost_repo import CostRepository
from think_tank.storage.models import StoredMessage
from think_tank.storage.snapshot_repo import SnapshotRepository

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _record(user="u1", conversation="c1", when=T0, cost=0.01, cached=0, partial=False):
    return CostRecord(
        provider="openai",
        model="gpt-4o-mini",
        usage=UsageStats(100, 20, cached),
        total_cost=cost,
        user_id=user,
        conversation_id=conversation,
        persona_id="p-alice",
        partial=partial,
        created_at=when,
    )


async def test_cost_records_round_trip(db):
    repo = CostRepository(db)
    row_id = await repo.record(_record(cached=40, partial=True))

    [stored] = await repo.query()
    assert stored.id == row_id
    assert stored.usage == UsageStats(100, 20, 40)
    assert stored.partial
    assert stored.created_at == T0


async def test_cost_query_filters(db):
    repo = CostRepository(db)
    await repo.record(_record())
    await repo.record(_record(user="u2", when=T0 + timedelta(hours=1)))
    await repo.record(_record(conversation="c2", when=T0 + timedelta(days=2)))

    assert len(await repo.query(user_id="u1")) == 2
    assert len(await repo.query(conversation_id="c2")) == 1
    window = await repo.query(start=T0 + timedelta(minutes=30), end=T0 + timedelta(days=1))
    assert [r.user_id for r in window] == ["u2"]


async def test_total_spend_since(db):
    repo = CostRepository(db)
    await repo.record(_record(cost=0.5))
    await repo.record(_record(cost=0.25, when=T0 + timedelta(days=1)))
    assert await repo.total_spend("u1", T0 + timedelta(hours=1)) == 0.25
    assert await repo.total_spend("nobody", T0) == 0.0


async def test_persona_snapshot_upsert(db):
    repo = SnapshotRepository(db)
    await repo.save_persona(Persona(id="p1", name="Alice", provider="openai", model="gpt-4o-mini"))
    await repo.save_persona(Persona(id="p1", name="Alice", provider="openai", model="gpt-4o", temperature=0.2))

    persona = await repo.get_persona("p1")
    assert persona["model"] == "gpt-4o"
    assert persona["temperature"] == 0.2
    assert await repo.get_persona("p2") is None


async def test_conversation_messages_keep_latest_in_order(db):
    repo = SnapshotRepository(db)
    for i in range(5):
        await repo.save_message(StoredMessage(conversation_id="c1", role="user", content=f"m{i}"))
    await repo.save_message(StoredMessage(conversation_id="other", role="user", content="x"))

    messages = await repo.get_conversation_messages("c1", limit=3)
    assert [m["content"] for m in messages] == ["m2", "m3", "m4"]
    assert messages[0]["conversationId"] == "c1"


async def test_cache_fetch_through_reads_sqlite(db, clock):
    snapshots = SnapshotRepository(db)
    await snapshots.save_persona(Persona(id="p1", name="Alice", provider="openai", model="gpt-4o-mini"))
    control = CacheControl(TTLCache(clock=clock), snapshots)

    response = await control.handle({"action": "get", "key": "persona:p1"})
    assert response["success"]
    assert response["data"]["name"] == "Alice"
