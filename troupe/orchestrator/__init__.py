"""Turn-taking for multi-companion conversations.

Main components:
- SpeakerScheduler: runs the selection rules and returns a TurnDecision
- ModeratorDeputy: internal companion that asks the backend for a speaker
- rules: the individual selection rules, in priority order
"""

from .moderator import (
    MODERATOR_CONFIG,
    MODERATOR_TIMEOUT,
    SELECT_SPEAKER_ACTION,
    ModeratorDeputy,
    ModeratorOutcome,
    ModeratorStatus,
)
from .prompts import (
    CONVERSATION_EPILOGUE,
    MODERATOR_PROLOGUE,
    format_moderator_prompt,
    format_roster,
)
from .rules import RULE_ORDER, SelectionRule, SelectionState, build_state, eligible_candidates
from .scheduler import SpeakerScheduler, TurnDecision, create_scheduler

__all__ = [
    # Scheduler
    "SpeakerScheduler",
    "TurnDecision",
    "create_scheduler",
    # Rules
    "RULE_ORDER",
    "SelectionRule",
    "SelectionState",
    "build_state",
    "eligible_candidates",
    # Moderator
    "ModeratorDeputy",
    "ModeratorOutcome",
    "ModeratorStatus",
    "MODERATOR_CONFIG",
    "MODERATOR_TIMEOUT",
    "SELECT_SPEAKER_ACTION",
    # Prompts
    "MODERATOR_PROLOGUE",
    "CONVERSATION_EPILOGUE",
    "format_moderator_prompt",
    "format_roster",
]
