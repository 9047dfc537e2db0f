"""Convert a canonical chat history into each backend's message format."""

from __future__ import annotations

from typing import Any, Sequence

from think_tank.core.models import ChatMessage
from think_tank.core.types import Role

ANTHROPIC_CACHE_TAIL = 3  # the most recent messages change every turn, never cache them
ANTHROPIC_CACHE_MIN_HISTORY = 5


def persona_reminder(persona_name: str) -> str:
    return (
        f'IMPORTANT: You are responding as "{persona_name}". '
        f'You must identify yourself as "{persona_name}" in your response.'
    )


def with_persona_reminder(messages: Sequence[ChatMessage], persona_name: str) -> list[ChatMessage]:
    """Return the history unchanged, followed by a system reminder naming the persona."""
    return [*messages, ChatMessage(role=Role.SYSTEM, content=persona_reminder(persona_name))]


def build_openai_messages(messages: Sequence[ChatMessage], persona_name: str) -> list[dict[str, str]]:
    return [m.to_dict() for m in with_persona_reminder(messages, persona_name)]


def _system_text(messages: Sequence[ChatMessage], persona_name: str) -> str:
    parts = [m.content for m in messages if m.role == Role.SYSTEM and m.content]
    parts.append(persona_reminder(persona_name))
    return "\n\n".join(parts)


def build_anthropic_payload(
    messages: Sequence[ChatMessage],
    persona_name: str,
    cache_min_chars: int = 500,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split system text from the dialogue and add prompt-cache markers.

    Returns ``(system_blocks, messages)``. The system prompt is cached when it
    is long enough; in a long history the last sufficiently long message before
    the most recent turns is cached too, which covers the whole prefix.
    """
    system_text = _system_text(messages, persona_name)
    system_block: dict[str, Any] = {"type": "text", "text": system_text}
    if len(system_text) >= cache_min_chars:
        system_block["cache_control"] = {"type": "ephemeral"}

    dialogue: list[dict[str, Any]] = [
        {"role": "assistant" if m.role == Role.ASSISTANT else "user", "content": m.content}
        for m in messages
        if m.role != Role.SYSTEM
    ]

    if len(dialogue) > ANTHROPIC_CACHE_MIN_HISTORY:
        for idx in range(len(dialogue) - ANTHROPIC_CACHE_TAIL - 1, -1, -1):
            text = dialogue[idx]["content"]
            if len(text) >= cache_min_chars:
                dialogue[idx] = {
                    "role": dialogue[idx]["role"],
                    "content": [{"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}],
                }
                break

    return [system_block], dialogue


def build_gemini_payload(
    messages: Sequence[ChatMessage],
    persona_name: str,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Return ``(system_instruction, contents)`` for generateContent."""
    system_instruction = {"parts": [{"text": _system_text(messages, persona_name)}]}
    contents = [
        {"role": "model" if m.role == Role.ASSISTANT else "user", "parts": [{"text": m.content}]}
        for m in messages
        if m.role != Role.SYSTEM
    ]
    return system_instruction, contents
