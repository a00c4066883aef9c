"""Conversation history entries and the orderings derived from them."""

from dataclasses import dataclass
from typing import Optional, Sequence

from troupe.companions.models import Participant


@dataclass(frozen=True)
class HistoryEntry:
    """One line of conversation."""

    speaker: Participant
    message: str
    timestamp: float


def sort_history(entries: Sequence[HistoryEntry]) -> list[HistoryEntry]:
    """Return the entries ordered by timestamp.

    Entries sharing a timestamp keep the order in which they were given,
    so the later-inserted of two simultaneous entries counts as more recent.
    """
    indexed = sorted(enumerate(entries), key=lambda item: (item[1].timestamp, item[0]))
    return [entry for _, entry in indexed]


def last_speaker(entries: Sequence[HistoryEntry]) -> Optional[Participant]:
    """Speaker of the most recent entry, or None for an empty history."""
    if not entries:
        return None
    return sort_history(entries)[-1].speaker


def render_transcript(
    entries: Sequence[HistoryEntry],
    username: str,
    window: int = 8,
) -> str:
    """Render the tail of a conversation as ``name: text`` lines.

    Internal participants are left out before the window is applied, and
    the human speaks under ``username``.
    """
    visible = [e for e in entries if not e.speaker.is_internal][-window:]
    lines = []
    for entry in visible:
        name = username if entry.speaker.is_human else entry.speaker.name
        lines.append(f"{name}: {entry.message.strip()}")
    return "\n".join(lines)
