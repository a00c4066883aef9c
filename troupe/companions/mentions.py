"""Mention detection for companions.

A companion counts as mentioned when its display name, or its slug read
with spaces in place of dashes, appears in a message as a whole word.
Matching is case-insensitive and tolerates a leading ``@``:

- "Ask Alice or Bob" mentions Alice, then Bob
- "@jean-luc, thoughts?" mentions Jean Luc
"""

import re
from typing import Iterable, NamedTuple

from .models import Participant


class Mention(NamedTuple):
    """One participant found in a text."""

    participant: Participant
    position: int  # Offset of the first occurrence
    length: int


def _mention_pattern(participant: Participant) -> re.Pattern[str]:
    aliases = {participant.name, participant.id.replace("-", " "), participant.id}
    # Longest alias first so a name beats its own shorter slug form
    alternatives = "|".join(
        re.escape(alias).replace(r"\ ", r"\s+")
        for alias in sorted(aliases, key=len, reverse=True)
        if alias
    )
    return re.compile(rf"(?<!\w)@?(?:{alternatives})(?!\w)", re.IGNORECASE)


def locate_mentions(text: str, pool: Iterable[Participant]) -> list[Mention]:
    """Find the first occurrence of every participant of ``pool`` in ``text``.

    A match lying inside a longer match of another participant does not
    count, so "Jean Luc" mentions Jean Luc but not a companion named "Jean".

    Returns:
        Mentions sorted by position
    """
    matches: list[Mention] = []
    seen: set[str] = set()
    for participant in pool:
        if participant.id in seen:
            continue
        seen.add(participant.id)
        for match in _mention_pattern(participant).finditer(text):
            matches.append(Mention(participant, match.start(), match.end() - match.start()))

    # Enclosing matches sort ahead of the matches they contain
    matches.sort(key=lambda m: (m.position, -m.length))

    accepted: list[Mention] = []
    found: dict[str, Mention] = {}
    for mention in matches:
        end = mention.position + mention.length
        if any(
            outer.position <= mention.position and end <= outer.position + outer.length
            and outer.participant.id != mention.participant.id
            for outer in accepted
        ):
            continue
        accepted.append(mention)
        found.setdefault(mention.participant.id, mention)

    return sorted(found.values(), key=lambda m: m.position)


class MentionEvaluator:
    """Finds the companions referenced in a piece of conversation text."""

    def find_mentions(self, text: str, pool: Iterable[Participant]) -> list[Participant]:
        """Participants of ``pool`` mentioned in ``text``, in order of first occurrence.

        Examples:
            >>> alice, bob = Participant.create("Alice"), Participant.create("Bob")
            >>> [p.name for p in MentionEvaluator().find_mentions("Ask Alice or Bob", [bob, alice])]
            ['Alice', 'Bob']
        """
        if not text:
            return []
        return [mention.participant for mention in locate_mentions(text, pool)]

    def contains_mention(self, text: str, participant: Participant) -> bool:
        """Check if a message mentions a specific participant."""
        return bool(text) and bool(_mention_pattern(participant).search(text))
