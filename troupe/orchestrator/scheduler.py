"""Speaker scheduling: decides who talks next in a multi-companion chat.

The scheduler runs the named rules of ``troupe.orchestrator.rules`` in
priority order and stops at the first one with an answer. Only the
moderator fallback touches the network, and its failures never reach the
caller: a random pick always closes the chain.
"""

import inspect
import logging
import random
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from troupe.companions.mentions import MentionEvaluator
from troupe.companions.models import Participant
from troupe.companions.registry import CompanionRegistry
from troupe.config import ConversationConfig, Settings, get_settings
from troupe.conversation.history import HistoryEntry, render_transcript
from troupe.dispatch.job import JobContext
from troupe.errors import NoParticipantsError, NoSpeakerSelectedError

from . import rules
from .moderator import ModeratorDeputy
from .rules import SelectionRule, SelectionState, Speakers

logger = logging.getLogger(__name__)


@dataclass
class TurnDecision:
    """Who speaks next, and which rule decided it.

    Behaves as the ordered sequence of speakers: the first is the
    immediate next speaker, the rest follow in order.
    """

    speakers: list[Participant]
    rule: str

    @property
    def first(self) -> Participant:
        return self.speakers[0]

    @property
    def ids(self) -> list[str]:
        return [p.id for p in self.speakers]

    def __iter__(self) -> Iterator[Participant]:
        return iter(self.speakers)

    def __len__(self) -> int:
        return len(self.speakers)

    def __getitem__(self, index: int) -> Participant:
        return self.speakers[index]


class SpeakerScheduler:
    """Turn-taking decision engine.

    Holds no per-conversation state; every call works on the snapshot of
    history and participants it is given.
    """

    def __init__(
        self,
        registry: CompanionRegistry,
        mentions: Optional[MentionEvaluator] = None,
        moderator: Optional[ModeratorDeputy] = None,
        conversation: Optional[ConversationConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the scheduler.

        Args:
            registry: Resolves deputies and the human participant
            mentions: Finds participants named in a message
            moderator: Backend-driven fallback; skipped when None
            conversation: Selection mode, repeat policy and moderator window
            rng: Random source for the random rules
        """
        self.registry = registry
        self.mentions = mentions or MentionEvaluator()
        self.moderator = moderator
        self.conversation = conversation or ConversationConfig()
        self.rng = rng or random.Random()

        self.rules: list[SelectionRule] = [
            SelectionRule("single_participant", rules.single_participant),
            SelectionRule("target_with_deputy", rules.target_with_deputy),
            SelectionRule("explicit_target", rules.explicit_target),
            SelectionRule("single_candidate", rules.single_candidate),
            SelectionRule("open_question", rules.open_question),
            SelectionRule("mention_override", rules.mention_override),
            SelectionRule("configured_rotation", rules.configured_rotation),
            SelectionRule("moderator_fallback", self._moderator_fallback),
            SelectionRule("random_fallback", rules.random_fallback),
        ]

    async def select_next_speakers(
        self,
        history: Sequence[HistoryEntry],
        participants: Sequence[Participant],
        target: Optional[Participant] = None,
        excluded: Optional[Sequence[Participant]] = None,
        recent_messages: Optional[Sequence[HistoryEntry]] = None,
        action: Optional[str] = None,
        context: Optional[JobContext] = None,
    ) -> TurnDecision:
        """Decide who should speak next.

        Args:
            history: Conversation so far, in any order
            participants: Everyone in the chat
            target: Explicitly requested next speaker
            excluded: Participants that must not be picked
            recent_messages: Window shown to the moderator; without it the
                moderator fallback is skipped
            action: Action the target is asked to perform (selects its deputy)
            context: Chat/situation identifiers for the moderator job

        Returns:
            A non-empty TurnDecision

        Raises:
            NoParticipantsError: If ``participants`` is empty
            NoSpeakerSelectedError: If a customized rule chain ends without an answer
        """
        if not participants:
            raise NoParticipantsError()

        deputy = None
        if target is not None:
            deputy = self.registry.find_deputy_for(target.config, action)

        state = rules.build_state(
            history=history,
            participants=participants,
            target=target,
            deputy=deputy,
            excluded=excluded,
            recent_messages=recent_messages,
            selection=self.conversation.speaker_selection,
            allow_repeat=self.conversation.allow_repeat_speaker,
            mentions=self.mentions,
            rng=self.rng,
            context=context,
        )
        logger.debug(
            f"Selecting speaker: last={state.last_speaker.id if state.last_speaker else None}, "
            f"candidates={[c.id for c in state.candidates]}"
        )

        for rule in self.rules:
            result = rule.apply(state)
            if inspect.isawaitable(result):
                result = await result
            if result:
                decision = TurnDecision(speakers=list(result), rule=rule.name)
                logger.debug(f"Next speaker(s) via {rule.name}: {decision.ids}")
                return decision

        raise NoSpeakerSelectedError([rule.name for rule in self.rules])

    def human_label(self, participants: Sequence[Participant]) -> str:
        """Name the human goes by in moderator transcripts."""
        for participant in participants:
            if participant.is_human:
                return participant.name
        human = self.registry.human
        return human.name if human is not None else self.conversation.username

    async def _moderator_fallback(self, state: SelectionState) -> Optional[Speakers]:
        if self.moderator is None or state.recent_messages is None or not state.candidates:
            return None

        username = self.human_label(state.participants)
        transcript = render_transcript(
            state.recent_messages, username, self.conversation.moderator_window
        )
        outcome = await self.moderator.select_speakers(
            state.candidates, username, transcript, state.context
        )

        if not outcome.ok:
            # Failures, timeouts and empty replies all fall through to a random pick
            logger.debug(f"Moderator outcome {outcome.status.value}: {outcome.error or outcome.reply}")
            return None
        return outcome.speakers


def create_scheduler(
    registry: CompanionRegistry,
    dispatcher=None,
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> SpeakerScheduler:
    """Factory function to create a scheduler from settings.

    Args:
        registry: Companions of the session
        dispatcher: Job dispatcher for the moderator; no moderator if None
        settings: Settings (uses global settings if not provided)
        rng: Random source

    Returns:
        Configured SpeakerScheduler instance
    """
    settings = settings or get_settings()
    mentions = MentionEvaluator()
    moderator = None
    if dispatcher is not None:
        moderator = ModeratorDeputy(
            dispatcher,
            mentions=mentions,
            timeout=settings.conversation.moderator_timeout_seconds,
        )
    return SpeakerScheduler(
        registry=registry,
        mentions=mentions,
        moderator=moderator,
        conversation=settings.conversation,
        rng=rng,
    )
