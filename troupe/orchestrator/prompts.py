"""Prompt templates for the moderator fallback."""

from typing import Iterable

from troupe.companions.models import Participant

MODERATOR_PROLOGUE = """
You are a moderator in an online chatroom. You are provided with a list of online users with their bios under ## ROLES ##. In addition, you have access to their conversation history under ## CONVERSATION ## where you can find the previous exchanges between different users.

Your task is to read the history in ## CONVERSATION ## and then select which of the ## ROLES ## should speak next. You MUST only return a single name as your response.
"""

ROLES_TEMPLATE = """
## ROLES ##

{roster}
{username}: A guest user in the chatroom.

## END OF ROLES ##

## CONVERSATION ##
"""

CONVERSATION_EPILOGUE = "\n## END OF CONVERSATION ##"


def format_roster(candidates: Iterable[Participant]) -> str:
    """One ``name: description`` line per autonomous candidate."""
    return "\n".join(
        f"{c.name}: {c.description}" for c in candidates if c.is_autonomous
    )


def format_moderator_prompt(
    candidates: Iterable[Participant],
    username: str,
    transcript: str,
) -> str:
    """Assemble the full speaker-selection prompt.

    Args:
        candidates: Participants eligible to speak next
        username: Label the human goes by in the transcript
        transcript: Recent conversation rendered as ``name: text`` lines

    Returns:
        Prompt text for the moderator job
    """
    roles = ROLES_TEMPLATE.format(roster=format_roster(candidates), username=username)
    return MODERATOR_PROLOGUE + roles + transcript + CONVERSATION_EPILOGUE
