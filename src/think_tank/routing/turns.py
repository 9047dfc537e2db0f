"""Decide which persona speaks next."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from think_tank.core.errors import InvalidStateError
from think_tank.core.models import Persona, TurnDecision
from think_tank.core.types import ConversationMode, ConversationState
from think_tank.log import get_logger
from think_tank.routing.mentions import MentionResult, parse

logger = get_logger(__name__)


class FallbackPolicy(Protocol):
    """Chooses a speaker when the last message named nobody.

    ``history`` holds persona ids in speaking order, most recent last;
    ``last_message`` is the text that named nobody.
    """

    def choose(
        self, roster: Sequence[Persona], history: Sequence[str], last_message: str = ""
    ) -> Optional[str]: ...


class RoundRobinPolicy:
    def choose(
        self, roster: Sequence[Persona], history: Sequence[str], last_message: str = ""
    ) -> Optional[str]:
        if not roster:
            return None
        ids = [p.id for p in roster]
        if not history or history[-1] not in ids:
            return ids[0]
        return ids[(ids.index(history[-1]) + 1) % len(ids)]


class LeastRecentlySpokenPolicy:
    def choose(
        self, roster: Sequence[Persona], history: Sequence[str], last_message: str = ""
    ) -> Optional[str]:
        if not roster:
            return None
        last_spoke = {pid: idx for idx, pid in enumerate(history)}
        # Never-spoken personas sort first, in roster order.
        return min(roster, key=lambda p: last_spoke.get(p.id, -1)).id


class RandomPolicy:
    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def choose(
        self, roster: Sequence[Persona], history: Sequence[str], last_message: str = ""
    ) -> Optional[str]:
        if not roster:
            return None
        current = history[-1] if history else None
        candidates = [p.id for p in roster if p.id != current] or [roster[0].id]
        return self._rng.choice(candidates)


@dataclass(frozen=True, slots=True)
class ScoreFactors:
    relevance: float
    expertise: float
    participation: float
    flow: float

    def weighted(self, weights: ScoreFactors) -> float:
        return (
            self.relevance * weights.relevance
            + self.expertise * weights.expertise
            + self.participation * weights.participation
            + self.flow * weights.flow
        )


DEFAULT_WEIGHTS = ScoreFactors(relevance=0.4, expertise=0.3, participation=0.2, flow=0.1)


class WeightedScorePolicy:
    """Scores every persona on four factors and picks the highest total.

    Ties go to the earlier persona in the roster. ``last_reasoning`` explains
    the latest choice.
    """

    def __init__(self, weights: ScoreFactors = DEFAULT_WEIGHTS):
        self.weights = weights
        self.last_reasoning: Optional[str] = None

    def choose(
        self, roster: Sequence[Persona], history: Sequence[str], last_message: str = ""
    ) -> Optional[str]:
        if not roster:
            return None
        scored = [(self.factors(p, roster, history, last_message), p) for p in roster]
        factors, winner = max(scored, key=lambda item: item[0].weighted(self.weights))
        self.last_reasoning = self.reasoning(winner, factors)
        return winner.id

    def factors(
        self,
        persona: Persona,
        roster: Sequence[Persona],
        history: Sequence[str],
        last_message: str = "",
    ) -> ScoreFactors:
        text = last_message.lower()
        matched = sum(1 for area in persona.expertise if area.lower() in text)
        return ScoreFactors(
            relevance=self._relevance(persona, text, matched),
            expertise=min(0.5 + 0.25 * matched, 1.0) if text else 0.5,
            participation=self._participation(persona, roster, history),
            flow=self._flow(persona, history),
        )

    @staticmethod
    def _relevance(persona: Persona, text: str, matched: int) -> float:
        if not text:
            return 0.5
        score = 0.5
        if persona.name.lower() in text:
            score += 0.3
        if matched:
            score += 0.2
        return min(score, 1.0)

    @staticmethod
    def _participation(persona: Persona, roster: Sequence[Persona], history: Sequence[str]) -> float:
        ids = {p.id for p in roster}
        spoken = sum(1 for pid in history if pid in ids)
        average = spoken / len(roster) or 1
        count = history.count(persona.id)
        if count > average * 1.5:
            return 0.3
        if count < average * 0.5:
            return 0.9
        return 0.6

    @staticmethod
    def _flow(persona: Persona, history: Sequence[str]) -> float:
        if history and history[-1] == persona.id:
            return 0.1
        if len(history) < 2:
            return 0.5
        recent = history[-3:]
        if len(set(recent)) == 1 and persona.id not in recent:
            return 0.9  # someone else has held the floor
        return 0.5

    @staticmethod
    def reasoning(persona: Persona, factors: ScoreFactors) -> str:
        reasons = []
        if factors.relevance > 0.7:
            reasons.append(f"{persona.name} is highly relevant to the current topic")
        if factors.expertise > 0.7:
            reasons.append(f"{persona.name} has strong expertise in this area")
        if factors.participation > 0.7:
            reasons.append(f"{persona.name} hasn't participated much yet")
        if factors.flow > 0.7:
            reasons.append(f"It's natural for {persona.name} to speak next")
        return "; ".join(reasons) or f"{persona.name} is the best choice based on overall factors"


def create_policy(name: str) -> FallbackPolicy:
    match name:
        case "round-robin":
            return RoundRobinPolicy()
        case "least-recent":
            return LeastRecentlySpokenPolicy()
        case "random":
            return RandomPolicy()
        case "weighted":
            return WeightedScorePolicy()
        case _:
            raise ValueError(f"Unknown fallback policy: {name}")


def next_turn(
    state: ConversationState,
    mode: ConversationMode,
    mention: MentionResult,
    roster: Sequence[Persona],
    fallback: FallbackPolicy | None = None,
    history: Sequence[str] = (),
    last_message: str = "",
) -> Optional[str]:
    """Return the id of the persona that should respond next, or None."""
    if state == ConversationState.ENDED:
        raise InvalidStateError("Conversation has ended")

    if mode == ConversationMode.MANUAL:
        return mention.next_speaker

    if mention.next_speaker is not None:
        return mention.next_speaker
    if fallback is None:
        return None
    return fallback.choose(roster, history, last_message)


class ConversationTurns:
    """Turn-taking state for one conversation.

    Not shared between conversations; callers serialize access per conversation.
    """

    def __init__(
        self,
        roster: Sequence[Persona],
        mode: ConversationMode = ConversationMode.AUTOMATIC,
        fallback: FallbackPolicy | None = None,
    ):
        self.roster = list(roster)
        self.mode = mode
        self.fallback = fallback or RoundRobinPolicy()
        self.state = ConversationState.ACTIVE
        self.history: list[str] = []

    def end(self) -> None:
        self.state = ConversationState.ENDED

    def record_turn(self, persona_id: str) -> None:
        if self.state == ConversationState.ENDED:
            raise InvalidStateError("Conversation has ended")
        self.history.append(persona_id)

    def decide(self, text: str) -> tuple[MentionResult, TurnDecision]:
        """Parse the latest message and pick the next speaker."""
        mention = parse(text, self.roster)
        next_id = next_turn(
            self.state, self.mode, mention, self.roster, self.fallback, self.history, mention.content
        )

        if mention.next_speaker is not None:
            reasoning = mention.reasons.get(self._name(mention.next_speaker)) or "mentioned"
        elif next_id is not None:
            explained = getattr(self.fallback, "last_reasoning", None)
            reasoning = explained or f"fallback:{type(self.fallback).__name__}"
        else:
            reasoning = None

        logger.debug("turn_decided", next_persona=next_id, mentions=mention.mentions, mode=self.mode)
        return mention, TurnDecision(next_persona_id=next_id, mentions=mention.mentions, reasoning=reasoning)

    def _name(self, persona_id: str) -> str:
        for persona in self.roster:
            if persona.id == persona_id:
                return persona.name
        return persona_id
