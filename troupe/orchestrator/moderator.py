"""The moderator deputy: an internal companion that picks the next speaker.

Asking the backend who should talk is the last resort of speaker
selection. The call is best-effort: it runs under its own timeout and
reports every outcome as a ``ModeratorOutcome`` value instead of raising,
so the scheduler can fall back to a random pick.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence

from troupe.companions.mentions import MentionEvaluator
from troupe.companions.models import CompanionConfig, CompanionKind, Participant
from troupe.config import GenerationParams
from troupe.dispatch.job import GenerationJob, JobContext, JobResponse
from troupe.errors import DispatchError

from .prompts import format_moderator_prompt

logger = logging.getLogger(__name__)

SELECT_SPEAKER_ACTION = "SELECT_SPEAKER"

# Default timeout for one moderator call; shorter than a companion reply
MODERATOR_TIMEOUT = 15.0  # seconds

MODERATOR_CONFIG = CompanionConfig(
    name="Moderator",
    kind=CompanionKind.INTERNAL,
    description="This is an internal bot for instruction-based inferences.",
    generation=GenerationParams(temperature=0),
)


class Dispatcher(Protocol):
    async def dispatch(self, job: GenerationJob) -> JobResponse:
        ...


class ModeratorStatus(str, Enum):
    """How a moderator call ended."""

    SUCCESS = "success"  # Reply named at least one eligible speaker
    EMPTY = "empty"  # Reply arrived but named nobody eligible
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class ModeratorOutcome:
    """Result of asking the moderator for the next speaker(s)."""

    status: ModeratorStatus
    speakers: list[Participant] = field(default_factory=list)
    reply: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ModeratorStatus.SUCCESS

    @classmethod
    def success(cls, speakers: list[Participant], reply: str) -> "ModeratorOutcome":
        return cls(status=ModeratorStatus.SUCCESS, speakers=speakers, reply=reply)

    @classmethod
    def empty(cls, reply: Optional[str]) -> "ModeratorOutcome":
        return cls(status=ModeratorStatus.EMPTY, reply=reply)

    @classmethod
    def failure(cls, error: str) -> "ModeratorOutcome":
        return cls(status=ModeratorStatus.FAILURE, error=error)

    @classmethod
    def timeout(cls, seconds: float) -> "ModeratorOutcome":
        return cls(status=ModeratorStatus.TIMEOUT, error=f"No reply within {seconds}s")


class ModeratorDeputy:
    """Internal companion that asks the backend to choose a speaker."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        mentions: Optional[MentionEvaluator] = None,
        timeout: float = MODERATOR_TIMEOUT,
        config: CompanionConfig = MODERATOR_CONFIG,
    ):
        """Initialize the moderator.

        Args:
            dispatcher: Runs the selection job
            mentions: Finds candidate names in the reply
            timeout: Seconds to wait for the backend before giving up
            config: Companion configuration; its generation parameters
                are sent with every selection job
        """
        self.dispatcher = dispatcher
        self.mentions = mentions or MentionEvaluator()
        self.timeout = timeout
        self.config = config
        self.participant = Participant(config)

    def build_job(
        self,
        candidates: Sequence[Participant],
        username: str,
        transcript: str,
        context: Optional[JobContext] = None,
    ) -> GenerationJob:
        """Build the selection job for the given roster and transcript."""
        context = context or JobContext()
        return GenerationJob(
            prompt=format_moderator_prompt(candidates, username, transcript),
            params=self.config.generation or GenerationParams(temperature=0),
            context=JobContext(
                action=SELECT_SPEAKER_ACTION,
                chat_id=context.chat_id,
                situation_id=context.situation_id,
                interaction_id=context.interaction_id,
                recipient=self.participant.id,
            ),
        )

    async def select_speakers(
        self,
        candidates: Sequence[Participant],
        username: str,
        transcript: str,
        context: Optional[JobContext] = None,
    ) -> ModeratorOutcome:
        """Ask the backend which candidate should speak next.

        Args:
            candidates: Participants eligible to speak
            username: Label of the human in the transcript
            transcript: Recent conversation, ``name: text`` per line
            context: Chat/situation identifiers to pass along

        Returns:
            A ModeratorOutcome; on success the speakers are in reverse
            mention order (last named first)
        """
        job = self.build_job(candidates, username, transcript, context)

        try:
            response = await asyncio.wait_for(
                self.dispatcher.dispatch(job),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Moderator timed out after {self.timeout}s")
            return ModeratorOutcome.timeout(self.timeout)
        except DispatchError as e:
            logger.error(f"Moderator dispatch failed ({e.reason}): {e.message}")
            return ModeratorOutcome.failure(str(e))
        except Exception as e:
            logger.error(f"Moderator error: {e}")
            return ModeratorOutcome.failure(str(e))

        reply = response.response
        if not reply:
            return ModeratorOutcome.empty(reply)

        mentioned = self.mentions.find_mentions(reply, candidates)
        if not mentioned:
            logger.debug(f"Moderator reply named nobody eligible: {reply[:100]}")
            return ModeratorOutcome.empty(reply)

        logger.debug("Moderator picked: " + ", ".join(p.name for p in mentioned))
        return ModeratorOutcome.success(list(reversed(mentioned)), reply)
