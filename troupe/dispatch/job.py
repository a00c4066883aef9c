"""Generation jobs and the normalized responses they produce."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from troupe.config.settings import GenerationParams


@dataclass(frozen=True)
class JobContext:
    """Where a job comes from and which conversation it belongs to."""

    action: Optional[str] = None  # Sent to the backend as the preset name
    chat_id: Optional[str] = None
    situation_id: Optional[str] = None
    interaction_id: Optional[str] = None
    recipient: Optional[str] = None  # Identity slug of the addressed companion


@dataclass(frozen=True)
class GenerationJob:
    """One request for text generation. Immutable once submitted."""

    prompt: Optional[str]
    params: Optional[GenerationParams] = None
    context: JobContext = field(default_factory=JobContext)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def payload(self, params: GenerationParams) -> dict[str, Any]:
        """Build the request body sent to the backend.

        Args:
            params: The effective generation parameters for this call

        Returns:
            JSON-serializable request body with unset fields omitted
        """
        body: dict[str, Any] = {
            "prompt": self.prompt,
            "preset": self.context.action,
            "chat_id": self.context.chat_id,
            "situation_id": self.context.situation_id,
            "interaction_id": self.context.interaction_id,
        }
        body = {k: v for k, v in body.items() if v is not None}
        body.update(params.to_payload())
        return body


@dataclass
class JobResponse:
    """Normalized result of a generation job."""

    id: Optional[str]
    response: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @classmethod
    def from_document(cls, document: Any) -> "JobResponse":
        """Map a completion document onto a JobResponse.

        Expects ``id``, ``choices[0].text`` and optionally
        ``usage.prompt_tokens`` / ``usage.completion_tokens``.

        Raises:
            ValueError: If the document does not have the completion shape
        """
        if not isinstance(document, dict):
            raise ValueError(f"expected a JSON object, got {type(document).__name__}")

        choices = document.get("choices")
        if not isinstance(choices, list):
            raise ValueError("reply has no 'choices' list")

        text = None
        if choices and isinstance(choices[0], dict):
            text = choices[0].get("text")

        usage = document.get("usage") or {}
        if not isinstance(usage, dict):
            usage = {}

        job_id = document.get("id")
        return cls(
            id=str(job_id) if job_id is not None else None,
            response=text,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )


__all__ = ["GenerationJob", "GenerationParams", "JobContext", "JobResponse"]
