"""Conversation history and the prompt audit log."""

from .history import HistoryEntry, last_speaker, render_transcript, sort_history
from .persistence import (
    AuditLog,
    AuditStore,
    InMemoryAuditLog,
    PromptRecord,
    now_ms,
)

__all__ = [
    "AuditLog",
    "AuditStore",
    "HistoryEntry",
    "InMemoryAuditLog",
    "PromptRecord",
    "last_speaker",
    "now_ms",
    "render_transcript",
    "sort_history",
]
