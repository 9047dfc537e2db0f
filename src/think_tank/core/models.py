"""Data models passed between the engine and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from think_tank.core.types import Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(role=Role(data["role"]), content=str(data.get("content", "")))


@dataclass(frozen=True, slots=True)
class Persona:
    """Conversational identity bound to one provider/model pair.

    ``name`` is the key mentions resolve against; it must be unique within a roster.
    """

    id: str
    name: str
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 800
    system_prompt: str = ""
    expertise: tuple[str, ...] = ()  # topics that make this persona a likely next speaker


@dataclass(frozen=True, slots=True)
class UsageStats:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_tokens: int = 0  # subset of prompt_tokens

    def __post_init__(self) -> None:
        for name in ("prompt_tokens", "completion_tokens", "cached_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "cachedTokens": self.cached_tokens,
        }


@dataclass(frozen=True, slots=True)
class CostRecord:
    """One completed (or explicitly partial) provider call. Never mutated."""

    provider: str
    model: str
    usage: UsageStats
    total_cost: float
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    persona_id: Optional[str] = None
    estimated: bool = False
    partial: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TurnDecision:
    next_persona_id: Optional[str] = None
    mentions: list[str] = field(default_factory=list)
    reasoning: Optional[str] = None
