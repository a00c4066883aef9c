"""Companion configuration and participant records."""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from troupe.config.settings import GenerationParams

_NON_WORD = re.compile(r"[^a-zA-Z0-9\s]+")
_WHITESPACE = re.compile(r"\s+")


def to_id(name: str) -> str:
    """Derive the stable identity slug for a display name.

    Examples:
        >>> to_id("Jean Luc")
        'jean-luc'
        >>> to_id("Dr. O'Neil")
        'dr-oneil'
    """
    return _WHITESPACE.sub("-", _NON_WORD.sub("", name)).lower()


class CompanionKind(str, Enum):
    """What kind of entity sits behind a participant."""

    HUMAN = "human"
    AUTONOMOUS = "autonomous"
    INTERNAL = "internal"


class CompanionStatus(str, Enum):
    """Lifecycle status of a participant during a session."""

    DISABLED = "disabled"
    AVAILABLE = "available"
    ENGAGED = "engaged"
    AUTONOMOUS = "autonomous"
    CHAT_ONLY = "chat-only"


class ActionDescription(BaseModel):
    """An action a companion can be asked to perform, handled by a deputy."""

    id: str
    label: Optional[str] = None
    deputy: str


class CompanionConfig(BaseModel):
    """Static configuration of one companion, as loaded from persona files."""

    name: str
    kind: CompanionKind = CompanionKind.AUTONOMOUS
    description: str = ""
    base_prompt: str = ""
    bio: Optional[str] = None
    deputy: Optional[str] = None  # Default delegate that speaks right after this one
    actions: list[ActionDescription] = Field(default_factory=list)
    generation: Optional[GenerationParams] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not to_id(v):
            raise ValueError("name must contain at least one letter or digit")
        return v.strip()


class Participant:
    """A companion taking part in a conversation.

    Identity is the slug derived from the configured name when the
    participant is created; two participants with the same slug are the
    same entity regardless of their mutable state.
    """

    def __init__(
        self,
        config: CompanionConfig,
        status: CompanionStatus = CompanionStatus.ENGAGED,
    ):
        self.config = config
        self.id = to_id(config.name)
        self.status = status

        # statistics
        self.interactions = 0
        self.actions = 0

    @classmethod
    def create(
        cls,
        name: str,
        kind: CompanionKind = CompanionKind.AUTONOMOUS,
        description: str = "",
        **config: object,
    ) -> "Participant":
        """Build a participant straight from configuration values."""
        return cls(CompanionConfig(name=name, kind=kind, description=description, **config))

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def kind(self) -> CompanionKind:
        return self.config.kind

    @property
    def description(self) -> str:
        return self.config.description

    @property
    def is_human(self) -> bool:
        return self.config.kind == CompanionKind.HUMAN

    @property
    def is_autonomous(self) -> bool:
        return self.config.kind == CompanionKind.AUTONOMOUS

    @property
    def is_internal(self) -> bool:
        return self.config.kind == CompanionKind.INTERNAL

    @property
    def is_disabled(self) -> bool:
        return self.status == CompanionStatus.DISABLED

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Participant):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Participant(id={self.id!r}, kind={self.kind.value}, status={self.status.value})"
