"""Find persona mentions in model output and derive a next-speaker hint.

Two forms are recognised:

- inline ``@Name``: case-insensitive, never a prefix of a longer word
  (``@Al`` does not match ``@Alice``);
- the directive ``[MENTION:Name:reason]``, which is rewritten to ``@Name``
  in the returned content. Directives naming someone outside the roster are
  left untouched.

A directive always makes its target a next-speaker candidate; an inline
mention does so only when the message contains a question mark. The first
candidate in document order wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from think_tank.core.models import Persona

_DIRECTIVE = re.compile(r"\[MENTION:([^:\]]+)(?::([^\]]*))?\]")

MENTION_SYSTEM_PROMPT = """
You can mention other participants in the conversation by using @PersonaName.
When you want to direct a question or comment to a specific persona, use their @mention.
Examples:
- "@Alice, what's your take on this approach?"
- "I agree with @Bob's point about scalability"
- "Let me ask @Charlie since they have experience with this"

You can also use structured mentions for clarity:
[MENTION:PersonaName:reason] will be converted to @PersonaName

Be natural with mentions - use them when it makes sense to involve or reference another participant.
"""


@dataclass(frozen=True, slots=True)
class MentionResult:
    content: str
    mentions: list[str] = field(default_factory=list)  # persona names, first-seen order
    next_speaker: Optional[str] = None  # persona id
    reasons: dict[str, str] = field(default_factory=dict)  # name -> directive reason


@dataclass(frozen=True, slots=True)
class _Match:
    start: int
    end: int
    persona: Persona
    directive: bool
    reason: Optional[str] = None


def _inline_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"@{re.escape(name)}(?![A-Za-z])", re.IGNORECASE)


def _find_inline(text: str, roster: Sequence[Persona]) -> list[_Match]:
    found = []
    for persona in roster:
        for m in _inline_pattern(persona.name).finditer(text):
            found.append(_Match(m.start(), m.end(), persona, directive=False))
    # Longest name first at the same offset, so "@Ann Lee" beats "@Ann".
    found.sort(key=lambda m: (m.start, -(m.end - m.start)))

    kept: list[_Match] = []
    cursor = -1
    for m in found:
        if m.start < cursor:
            continue
        kept.append(m)
        cursor = m.end
    return kept


def parse(text: str, roster: Sequence[Persona]) -> MentionResult:
    """Extract mentions of roster personas from ``text``."""
    by_name = {p.name.lower(): p for p in roster}

    directives: list[_Match] = []
    pieces: list[str] = []
    last = 0
    # Directives are resolved against the original text, inline mentions
    # against the rewritten one, so a rewritten directive is not counted twice.
    for m in _DIRECTIVE.finditer(text):
        persona = by_name.get(m.group(1).strip().lower())
        if persona is None:
            continue
        pieces.append(text[last:m.start()])
        offset = sum(len(p) for p in pieces)
        replacement = f"@{persona.name}"
        pieces.append(replacement)
        directives.append(
            _Match(offset, offset + len(replacement), persona, directive=True, reason=m.group(2) or None)
        )
        last = m.end()
    pieces.append(text[last:])
    content = "".join(pieces)

    directive_spans = {(d.start, d.end) for d in directives}
    inline = [m for m in _find_inline(content, roster) if (m.start, m.end) not in directive_spans]
    matches = sorted(directives + inline, key=lambda m: m.start)

    is_question = "?" in content
    mentions: list[str] = []
    reasons: dict[str, str] = {}
    next_speaker = None
    for m in matches:
        if m.persona.name not in mentions:
            mentions.append(m.persona.name)
        if m.reason and m.persona.name not in reasons:
            reasons[m.persona.name] = m.reason
        if next_speaker is None and (m.directive or is_question):
            next_speaker = m.persona.id

    return MentionResult(content=content, mentions=mentions, next_speaker=next_speaker, reasons=reasons)


def enhance_system_prompt(system_prompt: str, roster: Sequence[Persona], speaker: Persona | None = None) -> str:
    """Append mention instructions and the list of names the speaker may mention."""
    others = [p.name for p in roster if speaker is None or p.id != speaker.id]
    if not others:
        return system_prompt
    participants = "\n".join(f"- @{name}" for name in others)
    return f"{system_prompt}\n{MENTION_SYSTEM_PROMPT}\nOther participants:\n{participants}\n"
