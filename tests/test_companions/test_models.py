"""Tests for companion configuration and participants."""

import pytest
from pydantic import ValidationError

from troupe.companions import (
    CompanionConfig,
    CompanionKind,
    CompanionStatus,
    Participant,
    to_id,
)
from troupe.config import GenerationParams


class TestToId:
    """Tests for identity slug derivation."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Alice", "alice"),
            ("Jean Luc", "jean-luc"),
            ("Dr. O'Neil", "dr-oneil"),
            ("Anna-Lena", "annalena"),
            ("R2  D2", "r2-d2"),
            ("Zoë", "zo"),
        ],
    )
    def test_slug(self, name: str, expected: str) -> None:
        assert to_id(name) == expected


class TestCompanionConfig:
    def test_defaults(self) -> None:
        config = CompanionConfig(name="Alice")
        assert config.kind == CompanionKind.AUTONOMOUS
        assert config.deputy is None
        assert config.actions == []
        assert config.generation is None

    def test_name_is_stripped(self) -> None:
        assert CompanionConfig(name="  Alice ").name == "Alice"

    def test_name_without_letters_fails(self) -> None:
        with pytest.raises(ValidationError):
            CompanionConfig(name="!!!")

    def test_actions_and_generation(self) -> None:
        config = CompanionConfig.model_validate(
            {
                "name": "Writer",
                "deputy": "Editor",
                "actions": [{"id": "summarize", "label": "Summarize", "deputy": "Scribe"}],
                "generation": {"temperature": 0.3},
            }
        )
        assert config.actions[0].deputy == "Scribe"
        assert config.generation == GenerationParams(temperature=0.3)


class TestParticipant:
    """Tests for Participant identity and state."""

    def test_new_participant_is_engaged(self, alice: Participant) -> None:
        assert alice.status == CompanionStatus.ENGAGED
        assert alice.interactions == 0
        assert alice.actions == 0

    def test_id_derived_from_name(self) -> None:
        assert Participant.create("Jean Luc").id == "jean-luc"

    def test_equality_by_id(self) -> None:
        first = Participant.create("Alice", description="one")
        second = Participant.create("alice", description="two")
        second.status = CompanionStatus.DISABLED

        assert first == second
        assert hash(first) == hash(second)
        assert len({first, second}) == 1

    def test_not_equal_to_other_types(self, alice: Participant) -> None:
        assert alice != "alice"

    def test_id_is_stable(self, alice: Participant) -> None:
        """Changing mutable state never changes identity."""
        alice.status = CompanionStatus.CHAT_ONLY
        alice.interactions += 3
        assert alice.id == "alice"

    def test_kind_flags(self, alice: Participant, human: Participant) -> None:
        moderator = Participant.create("Moderator", kind=CompanionKind.INTERNAL)

        assert alice.is_autonomous and not alice.is_human
        assert human.is_human and not human.is_autonomous
        assert moderator.is_internal

    def test_status_values(self) -> None:
        assert CompanionStatus.CHAT_ONLY.value == "chat-only"
        assert CompanionStatus("disabled") == CompanionStatus.DISABLED
