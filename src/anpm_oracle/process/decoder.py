"""Decoding of AO evaluation results: tags, payloads and raw messages."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from anpm_oracle.process.errors import ProtocolError
from anpm_oracle.process.models import (
    ExecutionResult,
    JsonPayload,
    MessagePayload,
    RawPayload,
    ResponseMessage,
)
from anpm_oracle.process.tags import Tag, decode_tags, stringify


def parse_execution_result(body: object) -> ExecutionResult:
    """Convert a decoded JSON result body into an `ExecutionResult`."""

    if not isinstance(body, Mapping):
        raise ProtocolError(f"Result body must be a JSON object, got {type(body).__name__}")

    raw_messages = body.get("Messages")
    messages: tuple[ResponseMessage, ...] | None
    if raw_messages is None:
        messages = None
    elif isinstance(raw_messages, list):
        messages = tuple(_parse_message(item, index) for index, item in enumerate(raw_messages))
    else:
        raise ProtocolError("Result 'Messages' must be a list")

    raw_spawns = body.get("Spawns") or ()
    error = body.get("Error")
    return ExecutionResult(
        output=body.get("Output"),
        messages=messages,
        spawns=tuple(raw_spawns) if isinstance(raw_spawns, list | tuple) else (raw_spawns,),
        error=stringify(error) if error else None,
    )


def decode_payload(data: str) -> MessagePayload:
    """Classify message data as JSON or raw text. Never raises."""

    try:
        return JsonPayload(json.loads(data, parse_constant=_reject_constant))
    except (TypeError, ValueError, RecursionError):
        return RawPayload(data)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def tags_of(result: ExecutionResult, index: int = 0) -> dict[str, str]:
    """Tags of the message at `index` as a mapping."""

    return decode_tags(_message_at(result, index).tags)


def payload_of(result: ExecutionResult, index: int = 0) -> MessagePayload:
    return decode_payload(_message_at(result, index).data)


def data_of(result: ExecutionResult, index: int = 0) -> Any:
    """Parsed JSON data of the message at `index`, or its raw text."""

    return payload_of(result, index).value


def messages_of(result: ExecutionResult) -> tuple[ResponseMessage, ...]:
    return result.messages or ()


def format_result(result: ExecutionResult) -> dict[str, Any]:
    """Compact view of a result for debug logs."""

    messages = messages_of(result)
    if len(messages) > 1:
        return {
            "messages": [
                {"tags": decode_tags(message.tags), "data": message.data} for message in messages
            ],
        }
    if not messages:
        return {"tags": None, "data": None}
    return {"tags": decode_tags(messages[0].tags), "data": decode_payload(messages[0].data).value}


def _message_at(result: ExecutionResult, index: int) -> ResponseMessage:
    if result.messages is None:
        raise ProtocolError("Invalid message format: result has no messages")
    if index < 0 or index >= len(result.messages):
        raise IndexError(f"Message index {index} out of bounds ({len(result.messages)} messages)")
    return result.messages[index]


def _parse_message(item: object, index: int) -> ResponseMessage:
    if not isinstance(item, Mapping):
        raise ProtocolError(f"Message {index} must be a JSON object")
    raw_tags = item.get("Tags") or []
    if not isinstance(raw_tags, list):
        raise ProtocolError(f"Message {index} 'Tags' must be a list")
    tags = tuple(Tag.from_dict(tag) for tag in raw_tags if isinstance(tag, Mapping))
    data = item.get("Data")
    target = item.get("Target")
    return ResponseMessage(
        tags=tags,
        data="" if data is None else stringify(data),
        target=None if target is None else str(target),
    )
