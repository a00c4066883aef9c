"""Registry of the companions loaded for a session."""

import logging
from pathlib import Path
from typing import Iterable, Optional

import yaml
from pydantic import ValidationError

from troupe.errors import InvalidConfigError, UnknownCompanionError

from .models import CompanionConfig, CompanionStatus, Participant, to_id

logger = logging.getLogger(__name__)


class CompanionRegistry:
    """Holds every participant of a session, keyed by identity slug.

    Participants are registered once, at persona-load time. They are never
    removed during a session; ``disable`` takes them out of the default
    listing instead.
    """

    def __init__(self, participants: Optional[Iterable[Participant]] = None):
        self._participants: dict[str, Participant] = {}
        for participant in participants or []:
            self.register(participant)

    def register(self, participant: Participant) -> Participant:
        """Add a participant; a second registration under the same slug is ignored."""
        existing = self._participants.get(participant.id)
        if existing is not None:
            logger.warning(f"Companion '{participant.id}' already registered, keeping the first")
            return existing
        self._participants[participant.id] = participant
        return participant

    def list_participants(self, include_disabled: bool = False) -> list[Participant]:
        """Participants in registration order."""
        return [
            p for p in self._participants.values()
            if include_disabled or not p.is_disabled
        ]

    def find(self, name: str) -> Optional[Participant]:
        """Look up a participant by display name or slug."""
        return self._participants.get(to_id(name))

    def get(self, name: str) -> Participant:
        """Like ``find`` but raises when the participant is unknown."""
        participant = self.find(name)
        if participant is None:
            raise UnknownCompanionError(name)
        return participant

    def find_deputy_for(
        self,
        config: CompanionConfig,
        action: Optional[str] = None,
    ) -> Optional[Participant]:
        """Find the deputy that must speak right after a companion.

        A deputy named by a matching action wins over the companion's
        default deputy. Unknown or disabled deputies resolve to None.

        Args:
            config: Configuration of the targeted companion
            action: Action the target is being asked to perform, if any

        Returns:
            The deputy participant, or None
        """
        deputy_name = config.deputy
        if action is not None:
            for description in config.actions:
                if description.id == action:
                    deputy_name = description.deputy
                    break

        if not deputy_name:
            return None

        deputy = self.find(deputy_name)
        if deputy is None:
            logger.warning(f"Deputy '{deputy_name}' of '{config.name}' is not registered")
            return None
        if deputy.is_disabled:
            return None
        return deputy

    def set_status(self, name: str, status: CompanionStatus) -> Participant:
        participant = self.get(name)
        participant.status = status
        return participant

    def disable(self, name: str) -> Participant:
        return self.set_status(name, CompanionStatus.DISABLED)

    @property
    def human(self) -> Optional[Participant]:
        """The first human participant, if any."""
        for participant in self._participants.values():
            if participant.is_human:
                return participant
        return None

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Participant):
            return item.id in self._participants
        if isinstance(item, str):
            return to_id(item) in self._participants
        return False

    @classmethod
    def from_configs(cls, configs: Iterable[dict]) -> "CompanionRegistry":
        """Build a registry from raw configuration mappings."""
        participants = []
        for index, raw in enumerate(configs):
            try:
                config = CompanionConfig.model_validate(raw)
            except ValidationError as e:
                raise InvalidConfigError(f"companions[{index}]", raw, str(e)) from e
            participants.append(Participant(config))
        return cls(participants)

    @classmethod
    def from_yaml(cls, path: Path) -> "CompanionRegistry":
        """Load companions from a YAML file.

        The file holds either a list of companion mappings or a mapping
        with a ``companions`` list.
        """
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f) or []
        if isinstance(content, dict):
            content = content.get("companions", [])
        if not isinstance(content, list):
            raise InvalidConfigError("companions", path, "expected a list of companions")
        return cls.from_configs(content)


def load_companions(path: Path) -> CompanionRegistry:
    """Convenience wrapper around ``CompanionRegistry.from_yaml``."""
    return CompanionRegistry.from_yaml(path)
