"""Exception types raised while talking to an AO process."""

from __future__ import annotations


class ProcessError(RuntimeError):
    """Base error for AO process round trips."""


class RemoteError(ProcessError):
    """The process (or a unit in front of it) reported a failure."""

    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status


class ProtocolError(ProcessError):
    """A response is malformed or misses a field required for control flow."""
