"""Persona and message snapshots that back cache fetch-through."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from think_tank.core.models import Persona
from think_tank.storage.database import Database
from think_tank.storage.models import StoredMessage


class SnapshotRepository:
    def __init__(self, db: Database):
        self._db = db

    async def save_persona(self, persona: Persona) -> None:
        await self._db.conn.execute(
            """INSERT INTO personas (id, name, provider, model, temperature, max_tokens, system_prompt)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   provider = excluded.provider,
                   model = excluded.model,
                   temperature = excluded.temperature,
                   max_tokens = excluded.max_tokens,
                   system_prompt = excluded.system_prompt,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (
                persona.id,
                persona.name,
                persona.provider,
                persona.model,
                persona.temperature,
                persona.max_tokens,
                persona.system_prompt,
            ),
        )
        await self._db.conn.commit()

    async def get_persona(self, persona_id: str) -> Optional[dict[str, Any]]:
        """Persona as a plain dict, or None when unknown."""
        cursor = await self._db.conn.execute("SELECT * FROM personas WHERE id = ?", (persona_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        persona = Persona(
            id=row["id"],
            name=row["name"],
            provider=row["provider"],
            model=row["model"],
            temperature=row["temperature"],
            max_tokens=row["max_tokens"],
            system_prompt=row["system_prompt"],
        )
        return asdict(persona)

    async def save_message(self, message: StoredMessage) -> int:
        cursor = await self._db.conn.execute(
            """INSERT INTO messages (conversation_id, persona_id, role, content)
               VALUES (?, ?, ?, ?)""",
            (message.conversation_id, message.persona_id, str(message.role), message.content),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_conversation_messages(self, conversation_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """The most recent ``limit`` messages of a conversation, oldest first."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM (
                   SELECT * FROM messages WHERE conversation_id = ?
                   ORDER BY created_at DESC, id DESC LIMIT ?
               ) ORDER BY created_at ASC, id ASC""",
            (conversation_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            StoredMessage(
                id=row["id"],
                conversation_id=row["conversation_id"],
                persona_id=row["persona_id"],
                role=row["role"],
                content=row["content"],
                created_at=datetime.fromisoformat(row["created_at"]),
            ).to_dict()
            for row in rows
        ]
