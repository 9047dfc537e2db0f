"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from think_tank.core.models import ChatMessage
from think_tank.core.types import Role


@dataclass
class StoredMessage:
    conversation_id: str
    role: str  # "system" | "user" | "assistant"
    content: str
    persona_id: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_chat_message(self) -> ChatMessage:
        return ChatMessage(role=Role(self.role), content=self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "personaId": self.persona_id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
