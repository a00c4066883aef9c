"""Pytest configuration and fixtures for Troupe tests."""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio

from troupe.companions import CompanionKind, CompanionRegistry, Participant
from troupe.config import Settings, reset_settings
from troupe.conversation import AuditLog, HistoryEntry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_path = temp_dir / "config.yaml"
    config_path.write_text(
        """
api_key: test-key

backend:
  base_url: http://backend.test/
  timeout_seconds: 30

generation:
  temperature: 0.2
  max_tokens: 64

conversation:
  speaker_selection: round_robin
  username: guest

storage:
  database_path: "{db_path}"
""".format(db_path=str(temp_dir / "test.db").replace("\\", "/"))
    )
    return config_path


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    reset_settings()
    return Settings(
        api_key="test-key",
        backend={"base_url": "http://backend.test"},
        storage={"database_path": str(temp_dir / "test.db")},
    )


@pytest_asyncio.fixture
async def audit_log(temp_dir: Path) -> AsyncGenerator[AuditLog, None]:
    """Create an initialized SQLite audit log for tests."""
    log = AuditLog(temp_dir / "test.db")
    await log.initialize()
    yield log


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables for testing."""
    original = {}
    env_vars = [
        "TROUPE_API_KEY",
        "TROUPE_BACKEND__BASE_URL",
        "TROUPE_CONVERSATION__SPEAKER_SELECTION",
    ]
    for var in env_vars:
        original[var] = os.environ.pop(var, None)

    reset_settings()

    yield

    for var, value in original.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]

    reset_settings()


@pytest.fixture
def alice() -> Participant:
    return Participant.create("Alice", description="A curious botanist")


@pytest.fixture
def bob() -> Participant:
    return Participant.create("Bob", description="A retired sailor")


@pytest.fixture
def carol() -> Participant:
    return Participant.create("Carol", description="A night-shift nurse")


@pytest.fixture
def human() -> Participant:
    return Participant.create("User", kind=CompanionKind.HUMAN)


@pytest.fixture
def registry(alice: Participant, bob: Participant, carol: Participant, human: Participant) -> CompanionRegistry:
    """Registry holding three companions and the human."""
    return CompanionRegistry([alice, bob, carol, human])


@pytest.fixture
def make_history() -> Callable[..., list[HistoryEntry]]:
    """Build a history from ``(speaker, message)`` pairs with increasing timestamps."""

    def _make(*lines: tuple[Participant, str]) -> list[HistoryEntry]:
        return [
            HistoryEntry(speaker=speaker, message=message, timestamp=float(index))
            for index, (speaker, message) in enumerate(lines)
        ]

    return _make
