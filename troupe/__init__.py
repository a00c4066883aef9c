"""Troupe - turn-taking and generation dispatch for multi-companion chats."""

__version__ = "0.3.0"
