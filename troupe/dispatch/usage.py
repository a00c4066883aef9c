"""Process-wide token usage and serialized audit appends."""

import asyncio
import logging
import threading
from dataclasses import dataclass

from troupe.conversation.persistence import AuditStore, PromptRecord

from .job import JobResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Usage:
    """Cumulative token usage at one point in time."""

    input_tokens: int = 0
    output_tokens: int = 0
    jobs: int = 0
    failures: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            jobs=self.jobs + other.jobs,
            failures=self.failures + other.failures,
        )


class UsageLedger:
    """Token counters and audit writes shared by every dispatch.

    Counter updates take a thread lock, so dispatchers running on several
    event loops never lose an increment. Audit appends are serialized per
    event loop: each running loop gets its own asyncio lock, since a lock
    can only be awaited on the loop it first bound to.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._append_locks: dict[asyncio.AbstractEventLoop, asyncio.Lock] = {}
        self._usage = Usage()

    def record(self, response: JobResponse) -> Usage:
        """Add the usage reported by a successful response.

        Figures the backend did not report add nothing.
        """
        with self._lock:
            self._usage = self._usage + Usage(
                input_tokens=response.input_tokens or 0,
                output_tokens=response.output_tokens or 0,
                jobs=1,
            )
            return self._usage

    def record_failure(self) -> Usage:
        with self._lock:
            self._usage = self._usage + Usage(failures=1)
            return self._usage

    def snapshot(self) -> Usage:
        with self._lock:
            return self._usage

    def reset(self) -> None:
        with self._lock:
            self._usage = Usage()

    @property
    def input_tokens(self) -> int:
        return self.snapshot().input_tokens

    @property
    def output_tokens(self) -> int:
        return self.snapshot().output_tokens

    def _append_lock(self) -> asyncio.Lock:
        """The append lock of the running event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            lock = self._append_locks.get(loop)
            if lock is None:
                # Forget loops that have finished
                for stale in [other for other in self._append_locks if other.is_closed()]:
                    del self._append_locks[stale]
                lock = self._append_locks[loop] = asyncio.Lock()
            return lock

    async def append(self, store: AuditStore, record: PromptRecord) -> bool:
        """Write one audit record.

        Storage errors are logged, never raised.

        Returns:
            True if the record was written
        """
        async with self._append_lock():
            try:
                await store.append_prompt_record(
                    record.timestamp, record.prompt, record.result, record.config
                )
                return True
            except Exception as e:
                logger.error(f"Failed to write prompt record: {e}")
                return False
