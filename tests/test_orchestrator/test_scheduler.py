"""Tests for the speaker scheduler."""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from troupe.companions import CompanionKind, CompanionRegistry, Participant
from troupe.config import ConversationConfig, Settings
from troupe.conversation import HistoryEntry
from troupe.dispatch import JobContext, JobResponse
from troupe.errors import DispatchError, NoParticipantsError, NoSpeakerSelectedError
from troupe.orchestrator import ModeratorDeputy, SelectionRule, SpeakerScheduler, create_scheduler
from troupe.utils import LogCapture


def mock_dispatcher(reply: str = "", error: Exception = None) -> MagicMock:
    dispatcher = MagicMock()
    if error is not None:
        dispatcher.dispatch = AsyncMock(side_effect=error)
    else:
        dispatcher.dispatch = AsyncMock(return_value=JobResponse(id="mod-1", response=reply))
    return dispatcher


def make_scheduler(
    registry: CompanionRegistry,
    selection: str = "auto",
    allow_repeat: bool = False,
    dispatcher: MagicMock = None,
    seed: int = 0,
) -> SpeakerScheduler:
    moderator = ModeratorDeputy(dispatcher) if dispatcher is not None else None
    return SpeakerScheduler(
        registry,
        moderator=moderator,
        conversation=ConversationConfig(speaker_selection=selection, allow_repeat_speaker=allow_repeat),
        rng=random.Random(seed),
    )


@pytest.fixture
def everyone(alice: Participant, bob: Participant, carol: Participant, human: Participant) -> list[Participant]:
    return [alice, bob, carol, human]


class TestExplicitRules:
    """Rules that need no look at the conversation."""

    @pytest.mark.asyncio
    async def test_single_participant(self, registry: CompanionRegistry, alice: Participant, make_history) -> None:
        scheduler = make_scheduler(registry)
        decision = await scheduler.select_next_speakers(make_history((alice, "talking to myself")), [alice])

        assert decision.speakers == [alice]
        assert decision.rule == "single_participant"

    @pytest.mark.asyncio
    async def test_target_with_deputy(self) -> None:
        registry = CompanionRegistry.from_configs(
            [
                {"name": "Writer", "deputy": "Editor"},
                {"name": "Editor"},
                {"name": "Critic"},
            ]
        )
        writer, editor = registry.get("Writer"), registry.get("Editor")
        scheduler = make_scheduler(registry)

        decision = await scheduler.select_next_speakers([], registry.list_participants(), target=writer)

        assert decision.speakers == [writer, editor]
        assert decision.rule == "target_with_deputy"

    @pytest.mark.asyncio
    async def test_action_deputy(self) -> None:
        registry = CompanionRegistry.from_configs(
            [
                {"name": "Writer", "deputy": "Editor", "actions": [{"id": "summarize", "deputy": "Scribe"}]},
                {"name": "Editor"},
                {"name": "Scribe"},
            ]
        )
        scheduler = make_scheduler(registry)

        decision = await scheduler.select_next_speakers(
            [], registry.list_participants(), target=registry.get("Writer"), action="summarize"
        )

        assert decision.ids == ["writer", "scribe"]

    @pytest.mark.asyncio
    async def test_explicit_target(
        self, registry: CompanionRegistry, everyone: list[Participant], bob: Participant, make_history
    ) -> None:
        scheduler = make_scheduler(registry)
        history = make_history((bob, "I'll go again"))

        decision = await scheduler.select_next_speakers(history, everyone, target=bob)

        assert decision.speakers == [bob]
        assert decision.rule == "explicit_target"

    @pytest.mark.asyncio
    async def test_single_candidate(
        self, registry: CompanionRegistry, alice: Participant, bob: Participant, human: Participant, make_history
    ) -> None:
        scheduler = make_scheduler(registry)
        history = make_history((human, "hello"), (alice, "hi"))

        decision = await scheduler.select_next_speakers(history, [alice, bob, human], excluded=[human])

        assert decision.speakers == [bob]
        assert decision.rule == "single_candidate"


class TestConversationRules:
    """Rules driven by the latest messages."""

    @pytest.mark.asyncio
    async def test_open_question(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        make_history,
    ) -> None:
        scheduler = make_scheduler(registry)
        history = make_history((alice, "What do you think, Bob?"), (bob, "I agree with you"))

        decision = await scheduler.select_next_speakers(history, everyone)

        assert decision.speakers == [alice]
        assert decision.rule == "open_question"

    @pytest.mark.asyncio
    async def test_mention_override_from_human(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        human: Participant, make_history,
    ) -> None:
        """The last-named companion answers first."""
        scheduler = make_scheduler(registry)

        decision = await scheduler.select_next_speakers(make_history((human, "Ask Alice or Bob")), everyone)

        assert decision.speakers == [bob, alice]
        assert decision.rule == "mention_override"

    @pytest.mark.asyncio
    async def test_mention_override_from_companion(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        carol: Participant, human: Participant, make_history,
    ) -> None:
        """A companion that hands over the floor speaks again first."""
        scheduler = make_scheduler(registry)
        history = make_history((human, "hello all"), (carol, "Alice and Bob should weigh in"))

        decision = await scheduler.select_next_speakers(history, everyone)

        assert decision.speakers == [carol, bob, alice]

    @pytest.mark.asyncio
    async def test_mentions_limited_to_candidates(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        human: Participant, make_history,
    ) -> None:
        scheduler = make_scheduler(registry)

        decision = await scheduler.select_next_speakers(
            make_history((human, "Alice, then Bob")), everyone, excluded=[alice]
        )

        assert decision.speakers == [bob]

    @pytest.mark.asyncio
    async def test_round_robin(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, carol: Participant,
        human: Participant, make_history,
    ) -> None:
        scheduler = make_scheduler(registry, selection="round_robin")

        decision = await scheduler.select_next_speakers(make_history((human, "hey"), (carol, "hello")), everyone)

        assert decision.speakers == [alice]
        assert decision.rule == "configured_rotation"

    @pytest.mark.asyncio
    async def test_random_selection(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, human: Participant,
        make_history,
    ) -> None:
        scheduler = make_scheduler(registry, selection="random")

        decision = await scheduler.select_next_speakers(make_history((human, "hey"), (alice, "hello")), everyone)

        assert decision.rule == "configured_rotation"
        assert decision.first is not alice


class TestModeratorFallback:
    """Tests for the backend-driven fallback."""

    @pytest.mark.asyncio
    async def test_moderator_picks(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, carol: Participant,
        human: Participant, make_history,
    ) -> None:
        dispatcher = mock_dispatcher("Carol")
        scheduler = make_scheduler(registry, dispatcher=dispatcher)
        history = make_history((human, "hello"), (alice, "hi"))

        decision = await scheduler.select_next_speakers(
            history, everyone, recent_messages=history, context=JobContext(chat_id="c-1")
        )

        assert decision.speakers == [carol]
        assert decision.rule == "moderator_fallback"
        job = dispatcher.dispatch.call_args[0][0]
        assert job.context.chat_id == "c-1"
        assert job.context.action == "SELECT_SPEAKER"
        assert "User: hello\nAlice: hi" in job.prompt

    @pytest.mark.asyncio
    async def test_moderator_failure_falls_back(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, human: Participant,
        make_history,
    ) -> None:
        dispatcher = mock_dispatcher(error=DispatchError("Job failed!", "transport", MagicMock(job_id="j")))
        scheduler = make_scheduler(registry, dispatcher=dispatcher)
        history = make_history((human, "hello"), (alice, "hi"))

        decision = await scheduler.select_next_speakers(history, everyone, recent_messages=history)

        assert decision.rule == "random_fallback"
        assert decision.first is not alice
        dispatcher.dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_moderator_names_nobody(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, human: Participant,
        make_history,
    ) -> None:
        scheduler = make_scheduler(registry, dispatcher=mock_dispatcher("I cannot decide."))
        history = make_history((human, "hello"), (alice, "hi"))

        decision = await scheduler.select_next_speakers(history, everyone, recent_messages=history)

        assert decision.rule == "random_fallback"

    @pytest.mark.asyncio
    async def test_skipped_without_recent_messages(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, human: Participant,
        make_history,
    ) -> None:
        dispatcher = mock_dispatcher("Carol")
        scheduler = make_scheduler(registry, dispatcher=dispatcher)

        decision = await scheduler.select_next_speakers(make_history((human, "hello"), (alice, "hi")), everyone)

        assert decision.rule == "random_fallback"
        dispatcher.dispatch.assert_not_awaited()

    def test_create_scheduler(self, registry: CompanionRegistry, test_settings: Settings) -> None:
        scheduler = create_scheduler(registry, dispatcher=mock_dispatcher(), settings=test_settings)

        assert scheduler.moderator is not None
        assert scheduler.moderator.timeout == test_settings.conversation.moderator_timeout_seconds
        assert create_scheduler(registry, settings=test_settings).moderator is None


class TestInvariants:
    """Properties that hold for every decision."""

    @pytest.mark.asyncio
    async def test_no_participants(self, registry: CompanionRegistry) -> None:
        with pytest.raises(NoParticipantsError):
            await make_scheduler(registry).select_next_speakers([], [])

    @pytest.mark.asyncio
    async def test_chain_without_answer(self, registry: CompanionRegistry, everyone: list[Participant]) -> None:
        """A rule chain that never answers raises a package error."""
        scheduler = make_scheduler(registry)
        scheduler.rules = [SelectionRule("silent", lambda state: None)]

        with pytest.raises(NoSpeakerSelectedError) as exc_info:
            await scheduler.select_next_speakers([], everyone)

        assert exc_info.value.details == {"rules": ["silent"]}

    @pytest.mark.asyncio
    async def test_everyone_excluded(
        self, registry: CompanionRegistry, everyone: list[Participant], human: Participant, make_history
    ) -> None:
        """With nobody eligible a random non-internal participant is still returned."""
        moderator = Participant.create("Moderator", kind=CompanionKind.INTERNAL)
        participants = everyone + [moderator]

        decision = await make_scheduler(registry).select_next_speakers(
            make_history((human, "anyone?")), participants, excluded=everyone
        )

        assert decision.rule == "random_fallback"
        assert decision.first in everyone

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(10))
    async def test_last_speaker_not_repeated(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, human: Participant,
        make_history, seed: int,
    ) -> None:
        scheduler = make_scheduler(registry, seed=seed)

        decision = await scheduler.select_next_speakers(make_history((human, "hey"), (alice, "hello")), everyone)

        assert len(decision) >= 1
        assert decision.first is not alice
        assert decision.first in everyone

    @pytest.mark.asyncio
    async def test_repeat_allowed(self, registry: CompanionRegistry, alice: Participant, human: Participant,
                                  make_history) -> None:
        scheduler = make_scheduler(registry, allow_repeat=True)

        decision = await scheduler.select_next_speakers(
            make_history((human, "hi"), (alice, "Alice here")), [alice, human], excluded=[human]
        )

        assert decision.speakers == [alice]
        assert decision.rule == "single_candidate"

    @pytest.mark.asyncio
    async def test_history_order_does_not_matter(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        human: Participant,
    ) -> None:
        history = [
            HistoryEntry(human, "Ask Alice or Bob", 3.0),
            HistoryEntry(alice, "Anyone?", 1.0),
            HistoryEntry(bob, "hm", 2.0),
        ]
        scheduler = make_scheduler(registry)

        forward = await scheduler.select_next_speakers(history, everyone)
        backward = await scheduler.select_next_speakers(list(reversed(history)), everyone)

        assert forward.speakers == backward.speakers == [bob, alice]

    @pytest.mark.asyncio
    async def test_decision_logged(
        self, registry: CompanionRegistry, everyone: list[Participant], human: Participant, make_history
    ) -> None:
        with LogCapture() as capture:
            await make_scheduler(registry).select_next_speakers(make_history((human, "Ask Alice or Bob")), everyone)

        assert capture.has_message("Next speaker(s) via mention_override")

    @pytest.mark.asyncio
    async def test_deterministic_rules_repeatable(
        self, registry: CompanionRegistry, everyone: list[Participant], alice: Participant, bob: Participant,
        human: Participant, make_history,
    ) -> None:
        """Same snapshot, same answer, for every rule without randomness."""
        scheduler = make_scheduler(registry, selection="round_robin")
        snapshots = [
            make_history((alice, "Is it raining?"), (bob, "no")),
            make_history((human, "Ask Alice or Bob")),
            make_history((human, "hey"), (alice, "hello")),
        ]

        for history in snapshots:
            first = await scheduler.select_next_speakers(history, everyone)
            second = await scheduler.select_next_speakers(history, everyone)
            assert first.speakers == second.speakers
            assert first.rule == second.rule
