"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMode(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class ConversationState(StrEnum):
    ACTIVE = "active"
    ENDED = "ended"


class GroupBy(StrEnum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
