"""Sends generation jobs to the remote backend.

One call to ``JobDispatcher.dispatch`` performs one POST, reads the reply
(single JSON document or event stream), normalizes it into a
``JobResponse``, updates the token counters and writes one audit record.
Every failure reaches the caller as a ``DispatchError``.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from troupe.config import BackendConfig, GenerationParams, Settings, get_settings
from troupe.conversation.persistence import AuditStore, InMemoryAuditLog, PromptRecord, now_ms
from troupe.errors import (
    DispatchError,
    IncompleteStreamError,
    ResponseParseError,
    TroupeError,
    UnreadableStreamError,
)

from .job import GenerationJob, JobResponse
from .stream import reconstruct_stream
from .usage import Usage, UsageLedger

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"
NO_RESULT = "NONE"


class DispatchReason:
    """Machine-readable reasons carried by ``DispatchError``."""

    NO_PROMPT = "no_prompt"
    TRANSPORT = "transport"
    PARSE = "parse"
    INCOMPLETE_STREAM = "incomplete_stream"
    UNREADABLE_BODY = "unreadable_body"
    MISSING_ID = "missing_id"
    CANCELLED = "cancelled"


class MissingJobIdError(TroupeError):
    """Raised when a reply carries no job identifier."""

    def __init__(self) -> None:
        super().__init__("Job ID not found!", "MISSING_ID")


def _reason_for(error: BaseException) -> str:
    if isinstance(error, IncompleteStreamError):
        return DispatchReason.INCOMPLETE_STREAM
    if isinstance(error, UnreadableStreamError):
        return DispatchReason.UNREADABLE_BODY
    if isinstance(error, ResponseParseError):
        return DispatchReason.PARSE
    if isinstance(error, MissingJobIdError):
        return DispatchReason.MISSING_ID
    return DispatchReason.TRANSPORT


def _error_marker(error: BaseException) -> str:
    """Serialize an error for the audit log."""
    if isinstance(error, TroupeError):
        payload = error.to_dict()
    else:
        payload = {"error_type": type(error).__name__, "message": str(error)}
    return "ERROR: " + json.dumps(payload, default=str)


class JobDispatcher:
    """Dispatches generation jobs and keeps cumulative usage.

    Args:
        settings: Settings to read backend and generation defaults from
        audit_store: Where every attempt is recorded; in-memory if omitted
        client: Preconfigured ``httpx.AsyncClient`` (mainly for tests)
        ledger: Usage ledger to share between dispatchers
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        audit_store: Optional[AuditStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        ledger: Optional[UsageLedger] = None,
    ):
        settings = settings or get_settings()
        self.backend: BackendConfig = settings.backend
        self.defaults: GenerationParams = settings.generation
        self.api_key = settings.resolved_api_key
        self.audit_store: AuditStore = audit_store if audit_store is not None else InMemoryAuditLog()
        self.ledger = ledger or UsageLedger()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.backend.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.backend.timeout_seconds),
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "JobDispatcher":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def input_tokens(self) -> int:
        return self.ledger.input_tokens

    @property
    def output_tokens(self) -> int:
        return self.ledger.output_tokens

    @property
    def usage(self) -> Usage:
        return self.ledger.snapshot()

    def effective_params(self, job: GenerationJob) -> GenerationParams:
        """Session defaults with the job's own parameters laid over them."""
        if job.params is None:
            return self.defaults
        return job.params.merged_over(self.defaults)

    async def dispatch(self, job: GenerationJob, **transport_options: Any) -> JobResponse:
        """Run one generation job against the backend.

        Args:
            job: The job to run
            **transport_options: Passed to the HTTP request for this call
                only (``headers``, ``timeout``, ...)

        Returns:
            The normalized response

        Raises:
            DispatchError: On a missing prompt, transport failure, unparsable
                or incomplete reply, or a reply without an identifier
            asyncio.CancelledError: If the caller cancels; a failure record
                is still written
        """
        if not job.prompt:
            raise DispatchError("Can not run inference", DispatchReason.NO_PROMPT, job)

        params = self.effective_params(job)
        config = json.dumps(params.to_payload(), sort_keys=True)
        response: Optional[JobResponse] = None

        try:
            document = await self._post(job.payload(params), transport_options)
            response = self._to_job_response(document)
            if not response.id:
                raise MissingJobIdError()
        except asyncio.CancelledError:
            logger.warning(f"Job {job.job_id} cancelled")
            await self._audit(job.prompt, "ERROR: cancelled", config)
            raise
        except Exception as e:
            self.ledger.record_failure()
            await self._audit(job.prompt, _error_marker(e), config)
            logger.error(f"Job {job.job_id} failed: {e}")
            raise DispatchError(
                "Job failed!",
                _reason_for(e),
                job,
                job_response=response,
                cause=e,
            ) from e

        usage = self.ledger.record(response)
        logger.debug(
            f"Job {job.job_id} done: {response.input_tokens} in / {response.output_tokens} out "
            f"(session {usage.input_tokens} / {usage.output_tokens})"
        )
        await self._audit(job.prompt, response.response or NO_RESULT, config)
        return response

    async def _post(self, payload: dict[str, Any], options: dict[str, Any]) -> Any:
        """POST the payload and return the reply as one JSON document."""
        client = self._get_client()
        async with client.stream("POST", self.backend.path, json=payload, **options) as reply:
            reply.raise_for_status()

            content_type = reply.headers.get("content-type", "")
            if EVENT_STREAM in content_type:
                return await reconstruct_stream(reply.aiter_bytes())

            body = await reply.aread()
            try:
                return json.loads(body)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ResponseParseError("reply is not valid JSON", e) from e

    def _to_job_response(self, document: Any) -> JobResponse:
        try:
            return JobResponse.from_document(document)
        except ValueError as e:
            raise ResponseParseError(str(e), e) from e

    async def _audit(self, prompt: str, result: str, config: str) -> None:
        record = PromptRecord(timestamp=now_ms(), prompt=prompt, result=result, config=config)
        await self.ledger.append(self.audit_store, record)


def create_dispatcher(
    settings: Optional[Settings] = None,
    audit_store: Optional[AuditStore] = None,
) -> JobDispatcher:
    """Factory function to create a dispatcher from settings."""
    return JobDispatcher(settings=settings, audit_store=audit_store)
