"""Cost record persistence and queries for metrics aggregation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from think_tank.core.models import CostRecord, UsageStats
from think_tank.log import get_logger
from think_tank.storage.database import Database

logger = get_logger(__name__)


def _iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


class CostRepository:
    """Append-only store of cost records. Doubles as the orchestrator's cost sink."""

    def __init__(self, db: Database):
        self._db = db

    async def record(self, record: CostRecord) -> int:
        """Persist one record and return its row id."""
        cursor = await self._db.conn.execute(
            """INSERT INTO cost_records
               (user_id, conversation_id, persona_id, provider, model,
                input_tokens, output_tokens, cached_tokens, total_cost,
                estimated, partial, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.user_id,
                record.conversation_id,
                record.persona_id,
                str(record.provider),
                record.model,
                record.usage.prompt_tokens,
                record.usage.completion_tokens,
                record.usage.cached_tokens,
                record.total_cost,
                int(record.estimated),
                int(record.partial),
                _iso(record.created_at),
            ),
        )
        await self._db.conn.commit()
        logger.debug("cost_record_saved", id=cursor.lastrowid, provider=record.provider, model=record.model)
        return cursor.lastrowid  # type: ignore[return-value]

    async def query(
        self,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[CostRecord]:
        """Records matching every given filter, oldest first. ``end`` is inclusive."""
        clauses: list[str] = []
        params: list[object] = []
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        if conversation_id:
            clauses.append("conversation_id = ?")
            params.append(conversation_id)
        if start:
            clauses.append("created_at >= ?")
            params.append(_iso(start))
        if end:
            clauses.append("created_at <= ?")
            params.append(_iso(end))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await self._db.conn.execute(
            f"SELECT * FROM cost_records {where} ORDER BY created_at ASC, id ASC",
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def total_spend(self, user_id: str, since: datetime) -> float:
        cursor = await self._db.conn.execute(
            "SELECT COALESCE(SUM(total_cost), 0) FROM cost_records WHERE user_id = ? AND created_at >= ?",
            (user_id, _iso(since)),
        )
        row = await cursor.fetchone()
        return float(row[0]) if row else 0.0

    @staticmethod
    def _row_to_record(row) -> CostRecord:
        return CostRecord(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            persona_id=row["persona_id"],
            provider=row["provider"],
            model=row["model"],
            usage=UsageStats(
                prompt_tokens=row["input_tokens"],
                completion_tokens=row["output_tokens"],
                cached_tokens=row["cached_tokens"],
            ),
            total_cost=row["total_cost"],
            estimated=bool(row["estimated"]),
            partial=bool(row["partial"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
