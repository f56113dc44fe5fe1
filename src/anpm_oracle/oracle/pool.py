"""Task protocol of the AO pool process, interpreted through the `Code` tag."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from anpm_oracle.process.client import ProcessClient
from anpm_oracle.process.decoder import messages_of, payload_of, tags_of
from anpm_oracle.process.errors import ProcessError, ProtocolError, RemoteError
from anpm_oracle.process.models import ExecutionResult, RawPayload, Task, TaskCode
from anpm_oracle.process.tags import stringify

logger = logging.getLogger(__name__)

ACTION_HAS_PENDING_TASK = "Has-Pending-Task"
ACTION_GET_PENDING_TASK = "Get-Pending-Task"
ACTION_TASK_RESPONSE = "Task-Response"
ACTION_ADD_TASK = "Add-Task"
ACTION_GET_TASK_RESPONSE = "Get-Task-Response"


class AuthorizationError(ProcessError):
    """The pool refused this node identity. Retrying cannot succeed."""


@dataclass(slots=True)
class FetchOutcome:
    """Result of one `Get-Pending-Task` call that did not raise."""

    code: TaskCode | None
    raw_code: str | None
    task: Task | None = None
    detail: str | None = None


class PoolClient:
    """Pool actions on top of a process client."""

    def __init__(self, process: ProcessClient) -> None:
        self.process = process

    def has_pending_task(self) -> bool:
        """Cheap dry-run check; only `Code=204` means nothing is pending."""

        result = self.process.dry_run({"Action": ACTION_HAS_PENDING_TASK})
        if result.messages is None:
            raise ProtocolError(f"{ACTION_HAS_PENDING_TASK} response has no messages")
        return _response_code(result) != TaskCode.NO_CONTENT.value

    def fetch_task(self, node_id: str) -> FetchOutcome:
        """Claim the next pending task for `node_id`.

        Raises:
            AuthorizationError: the pool answered `Code=403`.
            ProtocolError: `Code=200` without a JSON task payload.
        """

        result = self.process.send_message(
            {"Action": ACTION_GET_PENDING_TASK, "NodeID": node_id, "Nodeid": node_id},
        )
        tags = tags_of(result)
        raw_code = tags.get("Code")
        code = TaskCode.parse(raw_code)
        if code is TaskCode.OK:
            payload = payload_of(result)
            if isinstance(payload, RawPayload):
                raise ProtocolError(f"{ACTION_GET_PENDING_TASK} payload is not JSON")
            return FetchOutcome(code=code, raw_code=raw_code, task=Task.from_payload(payload.value))
        if code is TaskCode.NO_CONTENT:
            return FetchOutcome(code=code, raw_code=raw_code)
        if code is TaskCode.FORBIDDEN:
            raise AuthorizationError(
                "Oracle not authorized. Make sure this Node ID is registered in the Pool: "
                f"{node_id}",
            )
        detail = tags.get("Error") or stringify(payload_of(result).value) or "Unknown error"
        return FetchOutcome(code=None, raw_code=raw_code, detail=detail)

    def send_task_response(self, node_id: str, ref: str, output: str) -> ExecutionResult:
        result = self.process.send_message(
            {"Action": ACTION_TASK_RESPONSE, "X-Oracle-Node-Id": node_id, "X-Reference": ref},
            {"output": output},
        )
        _require_ok(result, action=ACTION_TASK_RESPONSE)
        return result

    def add_task(self, ref: str, prompt: str, config: Any = None) -> ExecutionResult:
        payload: dict[str, Any] = {"prompt": prompt}
        if config is not None:
            payload["config"] = config
        result = self.process.send_message({"Action": ACTION_ADD_TASK, "Reference": ref}, payload)
        _require_ok(result, action=ACTION_ADD_TASK)
        return result

    def get_task(self, ref: str) -> Task | None:
        """Current state of task `ref`, or None when the pool does not return it."""

        result = self.process.send_message({"Action": ACTION_GET_TASK_RESPONSE}, ref)
        if _response_code(result) != TaskCode.OK.value:
            logger.debug("Task %s not returned: %s", ref, result.error or _response_code(result))
            return None
        payload = payload_of(result)
        if isinstance(payload, RawPayload):
            raise ProtocolError(f"{ACTION_GET_TASK_RESPONSE} payload is not JSON")
        return Task.from_payload(payload.value)


def _response_code(result: ExecutionResult) -> str | None:
    if not messages_of(result):
        return None
    return tags_of(result).get("Code")


def _require_ok(result: ExecutionResult, *, action: str) -> None:
    code = _response_code(result)
    if code is None or code == TaskCode.OK.value:
        return
    tags = tags_of(result)
    detail = tags.get("Error") or stringify(payload_of(result).value)
    raise RemoteError(f"{action} rejected with Code {code}: {detail}", status=code)
