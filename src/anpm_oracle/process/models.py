"""Typed envelopes, results and tasks exchanged with the AO pool process."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from anpm_oracle.process.errors import ProtocolError
from anpm_oracle.process.tags import Tag

_MILLISECOND_EPOCH_THRESHOLD = 100_000_000_000


class ExecutionMode(str, Enum):
    """How an envelope reaches the process."""

    SIMULATE = "dryrun"
    COMMIT = "message"


class CallStatus(str, Enum):
    """Generic `Status` tag vocabulary checked by the process client."""

    OK = "200"


class TaskCode(str, Enum):
    """`Code` tag vocabulary of the task pool actions."""

    OK = "200"
    NO_CONTENT = "204"
    FORBIDDEN = "403"

    @classmethod
    def parse(cls, value: str | None) -> TaskCode | None:
        """Return the matching code, or None for unexpected values."""

        if value is None:
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class TaskStatus(str, Enum):
    """Lifecycle state of a pool task as reported by the process."""

    PENDING = "pending"
    DONE = "done"
    OTHER = "other"

    @classmethod
    def parse(cls, value: object) -> TaskStatus:
        normalized = str(value or "").strip().lower()
        if normalized == cls.PENDING.value:
            return cls.PENDING
        if normalized == cls.DONE.value:
            return cls.DONE
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class Envelope:
    """Unit sent to a process in either execution mode."""

    target: str
    tags: tuple[Tag, ...]
    payload: str = ""

    def tag_dicts(self, extra: tuple[Tag, ...] = ()) -> list[dict[str, str]]:
        return [tag.to_dict() for tag in (*self.tags, *extra)]


@dataclass(frozen=True, slots=True)
class ResponseMessage:
    """One outbound message of an evaluated AO message."""

    tags: tuple[Tag, ...]
    data: str = ""
    target: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Evaluation result of a simulated or committed message.

    `messages` is None when the response carried no `Messages` field at all,
    which is distinct from an empty list.
    """

    output: Any = None
    messages: tuple[ResponseMessage, ...] | None = ()
    spawns: tuple[Any, ...] = ()
    error: str | None = None


@dataclass(frozen=True, slots=True)
class JsonPayload:
    """Message data that parsed as JSON."""

    value: Any


@dataclass(frozen=True, slots=True)
class RawPayload:
    """Message data kept as raw text because it is not JSON."""

    value: str


MessagePayload = JsonPayload | RawPayload


@dataclass(slots=True)
class Task:
    """Pool task as read from the process. The oracle only appends an output."""

    ref: str
    prompt: str
    config: Any = None
    status: TaskStatus = TaskStatus.PENDING
    resolve_node: str | None = None
    output: str | None = None
    submitter: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: object) -> Task:
        """Build a task from a decoded message payload."""

        if not isinstance(payload, Mapping):
            raise ProtocolError(f"Task payload must be a JSON object, got {type(payload).__name__}")
        ref = payload.get("ref")
        prompt = payload.get("prompt")
        if not isinstance(ref, str) or not ref:
            raise ProtocolError("Task payload is missing 'ref'")
        if not isinstance(prompt, str):
            raise ProtocolError(f"Task {ref} payload is missing 'prompt'")
        known = {
            "ref",
            "prompt",
            "config",
            "status",
            "resolve_node",
            "output",
            "submitter",
            "created_at",
            "updated_at",
        }
        return cls(
            ref=ref,
            prompt=prompt,
            config=payload.get("config"),
            status=TaskStatus.parse(payload.get("status", TaskStatus.PENDING.value)),
            resolve_node=_optional_str(payload.get("resolve_node")),
            output=_optional_str(payload.get("output")),
            submitter=_optional_str(payload.get("submitter")),
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
            extra={key: value for key, value in payload.items() if key not in known},
        )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _parse_timestamp(value: object) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        try:
            value = float(candidate)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(candidate)
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if not isinstance(value, int | float):
        return None
    seconds = float(value)
    if abs(seconds) >= _MILLISECOND_EPOCH_THRESHOLD:
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
