"""Speaker selection rules.

Each rule looks at an immutable ``SelectionState`` and either returns the
participants that should speak next or None to let the next rule decide.
The scheduler evaluates them strictly in ``RULE_ORDER``; the first rule
with an answer wins:

1. single_participant   - only one participant exists
2. target_with_deputy   - explicit target whose deputy must follow it
3. explicit_target      - explicit target alone
4. single_candidate     - only one eligible candidate is left
5. open_question        - the asker of the second-to-last message gets the floor
6. mention_override     - participants named in the last message
7. configured_rotation  - round robin or uniform random, per settings
8. moderator_fallback   - ask the backend (async, lives on the scheduler)
9. random_fallback      - uniform random pick, always answers
"""

import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence, Union

from troupe.companions.mentions import MentionEvaluator
from troupe.companions.models import Participant
from troupe.config import SpeakerSelection
from troupe.conversation.history import HistoryEntry, sort_history
from troupe.dispatch.job import JobContext

RULE_ORDER: tuple[str, ...] = (
    "single_participant",
    "target_with_deputy",
    "explicit_target",
    "single_candidate",
    "open_question",
    "mention_override",
    "configured_rotation",
    "moderator_fallback",
    "random_fallback",
)

Speakers = list[Participant]
RuleResult = Union[Optional[Speakers], Awaitable[Optional[Speakers]]]


@dataclass(frozen=True)
class SelectionState:
    """Snapshot of everything one scheduling call may look at."""

    history: tuple[HistoryEntry, ...]  # Sorted by timestamp
    participants: tuple[Participant, ...]
    candidates: tuple[Participant, ...]  # Eligible to speak next
    target: Optional[Participant] = None
    deputy: Optional[Participant] = None
    last_speaker: Optional[Participant] = None
    recent_messages: Optional[tuple[HistoryEntry, ...]] = None
    selection: SpeakerSelection = "auto"
    mentions: MentionEvaluator = field(default_factory=MentionEvaluator)
    rng: random.Random = field(default_factory=random.Random)
    context: Optional[JobContext] = None  # Passed along to the moderator job

    @property
    def fallback_pool(self) -> tuple[Participant, ...]:
        """Whom a random pick draws from; never empty for a non-empty chat."""
        if self.candidates:
            return self.candidates
        speaking = tuple(p for p in self.participants if not p.is_internal)
        return speaking or self.participants


class SelectionRule(NamedTuple):
    """A named step of the selection chain."""

    name: str
    apply: Callable[[SelectionState], RuleResult]


def eligible_candidates(
    participants: Sequence[Participant],
    excluded: Sequence[Participant],
    last: Optional[Participant],
    allow_repeat: bool,
) -> tuple[Participant, ...]:
    """Participants that may speak next.

    Excluded and internal participants never qualify; the last speaker is
    left out unless repeats are allowed.
    """
    excluded_ids = {p.id for p in excluded}
    allowed = [p for p in participants if p.id not in excluded_ids and not p.is_internal]
    if allow_repeat or last is None:
        return tuple(allowed)
    return tuple(p for p in allowed if p.id != last.id)


def build_state(
    history: Sequence[HistoryEntry],
    participants: Sequence[Participant],
    target: Optional[Participant] = None,
    deputy: Optional[Participant] = None,
    excluded: Optional[Sequence[Participant]] = None,
    recent_messages: Optional[Sequence[HistoryEntry]] = None,
    selection: SpeakerSelection = "auto",
    allow_repeat: bool = False,
    mentions: Optional[MentionEvaluator] = None,
    rng: Optional[random.Random] = None,
    context: Optional[JobContext] = None,
) -> SelectionState:
    """Freeze the inputs of one scheduling call into a SelectionState."""
    ordered = tuple(sort_history(history))
    last = ordered[-1].speaker if ordered else None
    return SelectionState(
        history=ordered,
        participants=tuple(participants),
        candidates=eligible_candidates(participants, excluded or (), last, allow_repeat),
        target=target,
        deputy=deputy,
        last_speaker=last,
        recent_messages=tuple(recent_messages) if recent_messages is not None else None,
        selection=selection,
        mentions=mentions or MentionEvaluator(),
        rng=rng or random.Random(),
        context=context,
    )


def single_participant(state: SelectionState) -> Optional[Speakers]:
    if len(state.participants) == 1:
        return [state.participants[0]]
    return None


def target_with_deputy(state: SelectionState) -> Optional[Speakers]:
    if state.target is not None and state.deputy is not None:
        return [state.target, state.deputy]
    return None


def explicit_target(state: SelectionState) -> Optional[Speakers]:
    if state.target is not None:
        return [state.target]
    return None


def single_candidate(state: SelectionState) -> Optional[Speakers]:
    if len(state.candidates) == 1:
        return [state.candidates[0]]
    return None


def open_question(state: SelectionState) -> Optional[Speakers]:
    """Whoever asked a question one message ago gets the answer's follow-up."""
    if len(state.history) < 2:
        return None
    asked = state.history[-2]
    if "?" in asked.message and not asked.speaker.is_internal:
        return [asked.speaker]
    return None


def mention_override(state: SelectionState) -> Optional[Speakers]:
    """Candidates named in the latest message, last-named first.

    A companion that raised the mentions without naming itself is put in
    front so it can follow up.
    """
    if not state.history:
        return None

    mentioned = state.mentions.find_mentions(state.history[-1].message, state.candidates)
    if not mentioned:
        return None

    speakers = list(reversed(mentioned))
    last = state.last_speaker
    if last is not None and last.is_autonomous and last not in mentioned:
        speakers.insert(0, last)
    return speakers


def configured_rotation(state: SelectionState) -> Optional[Speakers]:
    if state.selection == "round_robin" and state.last_speaker is not None:
        nxt = next_in_rotation(state.last_speaker, state.participants, state.candidates)
        return [nxt] if nxt is not None else None
    if state.selection == "random" and state.candidates:
        return [state.rng.choice(state.candidates)]
    return None


def next_in_rotation(
    last: Participant,
    order: Sequence[Participant],
    candidates: Sequence[Participant],
) -> Optional[Participant]:
    """First autonomous candidate after ``last`` in the cyclic ``order``."""
    allowed = {c.id for c in candidates if c.is_autonomous}
    if not allowed:
        return None

    ids = [p.id for p in order]
    start = ids.index(last.id) + 1 if last.id in ids else 0
    for offset in range(len(order)):
        participant = order[(start + offset) % len(order)]
        if participant.id in allowed:
            return participant
    return None


def random_fallback(state: SelectionState) -> Optional[Speakers]:
    pool = state.fallback_pool
    if not pool:
        return None
    return [state.rng.choice(pool)]
