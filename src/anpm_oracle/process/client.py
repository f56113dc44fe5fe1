"""Round trips against one AO process in simulate (dry-run) or commit mode."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from anpm_oracle.process.decoder import data_of, format_result, parse_execution_result, tags_of
from anpm_oracle.process.errors import ProcessError, ProtocolError, RemoteError
from anpm_oracle.process.models import CallStatus, Envelope, ExecutionMode, ExecutionResult
from anpm_oracle.process.signing import Signer, build_data_item
from anpm_oracle.process.tags import Tag, encode_tags, stringify

logger = logging.getLogger(__name__)

DEFAULT_CU_URL = "https://cu.ao-testnet.xyz"
DEFAULT_MU_URL = "https://mu.ao-testnet.xyz"
DEFAULT_TIMEOUT_SECONDS = 60.0
_CONNECT_TIMEOUT_SECONDS = 10.0
PROTOCOL_TAGS: tuple[Tag, ...] = (
    Tag("Data-Protocol", "ao"),
    Tag("Variant", "ao.TN.1"),
    Tag("Type", "Message"),
    Tag("SDK", "anpm-oracle"),
)
_DRY_RUN_PLACEHOLDER_ID = "1234"
_ERROR_BODY_PREVIEW_CHARS = 500


@dataclass(frozen=True, slots=True)
class ProcessEndpoints:
    """Compute unit (evaluation) and messenger unit (submission) base URLs."""

    cu_url: str = DEFAULT_CU_URL
    mu_url: str = DEFAULT_MU_URL


class ProcessClient:
    """Client bound to a single process id.

    No retries happen here; callers own the retry policy.
    Commit mode waits for settlement with its own read timeout,
    `settlement_timeout_seconds`; `None` waits as long as the compute unit takes.
    """

    def __init__(  # noqa: PLR0913
        self,
        process_id: str,
        *,
        signer: Signer | None = None,
        endpoints: ProcessEndpoints | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        settlement_timeout_seconds: float | None = None,
        debug: bool = False,
    ) -> None:
        if not process_id:
            raise ValueError("process_id must not be empty")
        self.process_id = process_id
        self.endpoints = endpoints or ProcessEndpoints()
        self.debug = debug
        self._signer = signer
        self._settlement_timeout = httpx.Timeout(
            timeout_seconds,
            connect=_CONNECT_TIMEOUT_SECONDS,
            read=settlement_timeout_seconds,
        )
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=_CONNECT_TIMEOUT_SECONDS),
            transport=transport,
        )

    def dry_run(
        self,
        tags: Mapping[str, str],
        payload: Any = None,
        *,
        check_status: bool = True,
    ) -> ExecutionResult:
        return self.execute(ExecutionMode.SIMULATE, tags, payload, check_status=check_status)

    def send_message(
        self,
        tags: Mapping[str, str],
        payload: Any = None,
        *,
        check_status: bool = True,
    ) -> ExecutionResult:
        return self.execute(ExecutionMode.COMMIT, tags, payload, check_status=check_status)

    def execute(
        self,
        mode: ExecutionMode,
        tags: Mapping[str, str],
        payload: Any = None,
        *,
        check_status: bool = True,
    ) -> ExecutionResult:
        """Send one envelope and return the (settled) result.

        Raises:
            RemoteError: the result carries `Error`, or a non-200 `Status` tag
                while `check_status` is set, or a unit answered with an HTTP error.
            ProtocolError: a unit answered with a malformed body.
        """

        started = time.monotonic()
        envelope = self.build_envelope(tags, payload)
        action = tags.get("Action", "")
        try:
            if mode is ExecutionMode.SIMULATE:
                result = self._simulate(envelope, owner=tags.get("Owner"))
            else:
                result = self._commit(envelope)
            self._check_result(result, check_status=check_status)
        except ProcessError:
            if self.debug:
                logger.debug("%s %s failed", action, mode.value, exc_info=True)
            raise

        if self.debug:
            logger.debug(
                "%s %s completed in %.2fs",
                action,
                mode.value,
                time.monotonic() - started,
                extra={"request_tags": dict(tags), "result": format_result(result)},
            )
        return result

    def build_envelope(self, tags: Mapping[str, str], payload: Any = None) -> Envelope:
        return Envelope(
            target=self.process_id,
            tags=tuple(encode_tags(tags)),
            payload="" if payload is None else stringify(payload),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ProcessClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _simulate(self, envelope: Envelope, *, owner: str | None) -> ExecutionResult:
        body = {
            "Id": _DRY_RUN_PLACEHOLDER_ID,
            "Target": envelope.target,
            "Owner": owner or _DRY_RUN_PLACEHOLDER_ID,
            "Anchor": "0",
            "Data": envelope.payload,
            "Tags": envelope.tag_dicts(PROTOCOL_TAGS),
        }
        answer = self._request_json(
            "POST",
            f"{self.endpoints.cu_url.rstrip('/')}/dry-run",
            unit="compute unit",
            params={"process-id": self.process_id},
            json=body,
        )
        return parse_execution_result(answer)

    def _commit(self, envelope: Envelope) -> ExecutionResult:
        if self._signer is None:
            raise ProcessError("Commit mode requires a signer")
        # Data items reject empty tag values.
        tags = [tag for tag in (*envelope.tags, *PROTOCOL_TAGS) if tag.value]
        item = build_data_item(
            self._signer,
            data=envelope.payload.encode("utf-8"),
            tags=tags,
            target=envelope.target,
        )
        answer = self._request_json(
            "POST",
            f"{self.endpoints.mu_url.rstrip('/')}/",
            unit="messenger unit",
            content=item.raw,
            headers={"Content-Type": "application/octet-stream", "Accept": "application/json"},
        )
        message_id = answer.get("id") if isinstance(answer, Mapping) else None
        if not message_id:
            raise ProtocolError("Messenger unit response has no message id")

        settled = self._request_json(
            "GET",
            f"{self.endpoints.cu_url.rstrip('/')}/result/{message_id}",
            unit="compute unit",
            waiting_for=f"settlement of message {message_id}",
            params={"process-id": self.process_id},
            timeout=self._settlement_timeout,
        )
        return parse_execution_result(settled)

    def _check_result(self, result: ExecutionResult, *, check_status: bool) -> None:
        if result.error:
            raise RemoteError(result.error)
        if not check_status or not result.messages:
            return
        status = tags_of(result).get("Status")
        if status is not None and status != CallStatus.OK.value:
            raise RemoteError(f"{status} {stringify(data_of(result))}", status=status)

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        unit: str,
        waiting_for: str | None = None,
        **kwargs: Any,
    ) -> object:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as error:
            raise RemoteError(f"Timeout waiting for {waiting_for or unit} at {url}") from error
        except httpx.HTTPError as error:
            raise RemoteError(f"HTTP error talking to {unit} at {url}: {error}") from error

        if not response.is_success:
            raise RemoteError(
                f"{unit} returned HTTP {response.status_code}: "
                f"{response.text[:_ERROR_BODY_PREVIEW_CHARS]}",
                status=str(response.status_code),
            )
        try:
            return response.json()
        except ValueError as error:
            raise ProtocolError(f"Could not parse {unit} response as JSON") from error
