"""Generation job dispatch and event-stream reconstruction.

Main components:
- JobDispatcher: posts one job to the backend and normalizes the reply
- StreamReconstructor: rebuilds a full reply from a token event stream
- UsageLedger: cumulative token counters and serialized audit appends
"""

from .dispatcher import DispatchReason, JobDispatcher, MissingJobIdError, create_dispatcher
from .job import GenerationJob, GenerationParams, JobContext, JobResponse
from .stream import StreamEnvelope, StreamReconstructor, reconstruct_stream
from .usage import Usage, UsageLedger

__all__ = [
    "DispatchReason",
    "GenerationJob",
    "GenerationParams",
    "JobContext",
    "JobDispatcher",
    "JobResponse",
    "MissingJobIdError",
    "StreamEnvelope",
    "StreamReconstructor",
    "Usage",
    "UsageLedger",
    "create_dispatcher",
    "reconstruct_stream",
]
