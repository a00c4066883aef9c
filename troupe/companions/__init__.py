"""Companion records, the session registry and mention detection."""

from .mentions import Mention, MentionEvaluator, locate_mentions
from .models import (
    ActionDescription,
    CompanionConfig,
    CompanionKind,
    CompanionStatus,
    Participant,
    to_id,
)
from .registry import CompanionRegistry, load_companions

__all__ = [
    "ActionDescription",
    "CompanionConfig",
    "CompanionKind",
    "CompanionRegistry",
    "CompanionStatus",
    "Mention",
    "MentionEvaluator",
    "Participant",
    "load_companions",
    "locate_mentions",
    "to_id",
]
