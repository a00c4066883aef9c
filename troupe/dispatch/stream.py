"""Rebuilds a complete completion document from an event-stream reply.

The backend streams one JSON chunk per token, framed as server-sent events:

    data: {"id": "x", "choices": [{"text": "He"}]}\\r\\n
    data: {"id": "x", "choices": [{"text": "llo"}], "usage": {...}}\\r\\n
    data: [DONE]\\r\\n

Envelope fields such as ``id`` and ``usage`` only show up reliably on later
chunks, so the reconstructor keeps the merged envelope of every chunk seen
and, once the stream ends, splices the concatenation of all tokens into
``choices[0].text``. The result has the same shape as a non-streamed reply.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Optional

import httpx

from troupe.errors import IncompleteStreamError, ResponseParseError, UnreadableStreamError

logger = logging.getLogger(__name__)

LINE_SEPARATOR = "\r\n"
DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


@dataclass
class StreamEnvelope:
    """Partial completion document merged progressively across chunks.

    Later chunks override earlier values; a field that is missing or null
    on a chunk never erases a value seen before.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    tokens: list[str] = field(default_factory=list)
    chunks: int = 0

    def merge(self, document: dict[str, Any]) -> None:
        """Fold one parsed data chunk into the envelope."""
        self.chunks += 1
        self.tokens.append(_token_text(document))
        for key, value in document.items():
            if value is not None:
                self.fields[key] = value

    @property
    def text(self) -> str:
        return "".join(self.tokens)

    def finalize(self) -> dict[str, Any]:
        """Validate the envelope and return the assembled document.

        Raises:
            IncompleteStreamError: If no chunk was seen or no text arrived
        """
        if self.chunks == 0:
            raise IncompleteStreamError()

        text = self.text
        if not text:
            raise IncompleteStreamError("Stream ended without any generated text.")

        document = dict(self.fields)
        choices = document.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            first = {**choices[0], "text": text}
            document["choices"] = [first, *choices[1:]]
        else:
            document["choices"] = [{"text": text}]
        return document


def _token_text(document: dict[str, Any]) -> str:
    choices = document.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        token = choices[0].get("text")
        if isinstance(token, str):
            return token
    return ""


class StreamReconstructor:
    """Line framer and chunk parser for one event-stream reply.

    Feed it raw byte chunks in arrival order with ``feed`` and call
    ``finish`` once the transport signals the end of the body. Reading is
    strictly sequential; one instance serves exactly one reply.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.envelope = StreamEnvelope()

    def feed(self, chunk: bytes) -> None:
        """Consume one chunk of the body.

        Every complete CRLF-terminated line is processed and discarded; a
        trailing partial line stays buffered until more bytes arrive.

        Raises:
            ResponseParseError: If a data line does not hold valid JSON
        """
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split(LINE_SEPARATOR)
        for line in lines[:-1]:
            self._process_line(line)
        self._buffer = lines[-1]

    def _process_line(self, raw_line: str) -> None:
        line = raw_line.strip()
        if not line or not line.startswith(DATA_PREFIX):
            return

        message = line[len(DATA_PREFIX):].strip()
        if not message or message == DONE_MARKER:
            return

        try:
            document = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing stream chunk: {message[:100]}")
            raise ResponseParseError("malformed JSON in stream chunk", e) from e

        if not isinstance(document, dict):
            raise ResponseParseError(f"stream chunk is a {type(document).__name__}, not an object")

        self.envelope.merge(document)

    def finish(self) -> dict[str, Any]:
        """Signal end of stream and return the assembled document.

        A trailing line without a CRLF terminator is discarded, like any
        other incomplete line.

        Raises:
            IncompleteStreamError: If no data object was ever observed
        """
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            logger.debug(f"Discarding unterminated trailing line: {self._buffer[:100]!r}")
        self._buffer = ""
        return self.envelope.finalize()


async def reconstruct_stream(chunks: Optional[AsyncIterable[bytes]]) -> dict[str, Any]:
    """Read an event-stream body to the end and build the complete document.

    Args:
        chunks: The body as an async iterable of byte chunks

    Returns:
        The completion document with the full text in ``choices[0].text``

    Raises:
        UnreadableStreamError: If the body cannot be read at all
        ResponseParseError: If a data chunk holds malformed JSON
        IncompleteStreamError: If the stream ends before any data object
    """
    if chunks is None:
        raise UnreadableStreamError()

    reconstructor = StreamReconstructor()
    try:
        async for chunk in chunks:
            reconstructor.feed(chunk)
    except httpx.StreamError as e:
        raise UnreadableStreamError(f"Response body is not readable: {e}") from e

    document = reconstructor.finish()
    logger.debug(
        f"Reconstructed stream from {reconstructor.envelope.chunks} chunks "
        f"({len(reconstructor.envelope.text)} chars)"
    )
    return document
