"""AO process messaging: tag codec, result decoding and the process client."""

from anpm_oracle.process.client import ProcessClient, ProcessEndpoints
from anpm_oracle.process.errors import ProcessError, ProtocolError, RemoteError
from anpm_oracle.process.models import (
    CallStatus,
    Envelope,
    ExecutionMode,
    ExecutionResult,
    JsonPayload,
    RawPayload,
    ResponseMessage,
    Task,
    TaskCode,
    TaskStatus,
)
from anpm_oracle.process.signing import ArweaveSigner, Signer

__all__ = [
    "ArweaveSigner",
    "CallStatus",
    "Envelope",
    "ExecutionMode",
    "ExecutionResult",
    "JsonPayload",
    "ProcessClient",
    "ProcessEndpoints",
    "ProcessError",
    "ProtocolError",
    "RawPayload",
    "RemoteError",
    "ResponseMessage",
    "Signer",
    "Task",
    "TaskCode",
    "TaskStatus",
]
