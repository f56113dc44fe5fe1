"""Shared test fixtures: a fake AO network served through httpx.MockTransport."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest

from anpm_oracle.http.inference import INFERENCE_PATH, InferenceClient
from anpm_oracle.oracle.pool import PoolClient
from anpm_oracle.process.client import ProcessClient, ProcessEndpoints
from anpm_oracle.process.signing import b64url_decode, b64url_encode

PROCESS_ID = b64url_encode(bytes(range(32)))
CU_URL = "https://cu.test"
MU_URL = "https://mu.test"
HYPERBEAM_URL = "http://hyperbeam.test"

Responder = dict[str, Any] | Callable[[httpx.Request], httpx.Response]


class FakeSigner:
    """Deterministic stand-in for a wallet signer."""

    signature_type = 1
    owner = b"\x07" * 512

    def __init__(self) -> None:
        self.signed: list[bytes] = []

    def sign(self, message: bytes) -> bytes:
        self.signed.append(message)
        return hashlib.sha512(message).digest() * 8


@dataclass(slots=True)
class ParsedDataItem:
    signature_type: int
    signature: bytes
    owner: bytes
    target: bytes
    anchor: bytes
    tags: list[tuple[str, str]]
    data: bytes


@dataclass(slots=True)
class RecordedCall:
    mode: str
    action: str
    tags: dict[str, str]
    data: str
    item: ParsedDataItem | None = None


@dataclass(slots=True)
class FakeAoNetwork:
    """Compute unit, messenger unit and HyperBEAM inference in one transport."""

    responses: dict[str, list[Responder]] = field(default_factory=dict)
    inference_responses: list[Any] = field(default_factory=list)
    calls: list[RecordedCall] = field(default_factory=list)
    inference_calls: list[dict[str, str]] = field(default_factory=list)
    _queued: dict[str, RecordedCall] = field(default_factory=dict)

    @staticmethod
    def result(
        *,
        code: str | None = None,
        data: Any = "",
        status: str | None = None,
        error: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        message_tags = dict(tags or {})
        if code is not None:
            message_tags["Code"] = code
        if status is not None:
            message_tags["Status"] = status
        body: dict[str, Any] = {
            "Output": "",
            "Spawns": [],
            "Messages": [
                {
                    "Target": "caller",
                    "Tags": [{"name": name, "value": value} for name, value in message_tags.items()],
                    "Data": data if isinstance(data, str) else json.dumps(data),
                },
            ],
        }
        if error is not None:
            body["Error"] = error
        return body

    def respond(self, action: str, *bodies: Responder) -> None:
        self.responses.setdefault(action, []).extend(bodies)

    def respond_inference(self, *responses: Any) -> None:
        self.inference_responses.extend(responses)

    @property
    def actions(self) -> list[str]:
        return [call.action for call in self.calls]

    def calls_for(self, action: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.action == action]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(CU_URL) and request.url.path == "/dry-run":
            body = json.loads(request.content)
            tags = {tag["name"]: tag["value"] for tag in body["Tags"]}
            call = RecordedCall(
                mode="dryrun",
                action=tags.get("Action", ""),
                tags=tags,
                data=body["Data"],
            )
            self.calls.append(call)
            return self._reply(call.action, request)
        if url.startswith(MU_URL):
            item = parse_data_item(request.content)
            tags = dict(item.tags)
            message_id = b64url_encode(hashlib.sha256(item.signature).digest())
            call = RecordedCall(
                mode="message",
                action=tags.get("Action", ""),
                tags=tags,
                data=item.data.decode("utf-8"),
                item=item,
            )
            self.calls.append(call)
            self._queued[message_id] = call
            return httpx.Response(202, json={"id": message_id, "message": "Processing DataItem"})
        if url.startswith(CU_URL) and request.url.path.startswith("/result/"):
            message_id = request.url.path.rsplit("/", 1)[-1]
            call = self._queued.pop(message_id)
            return self._reply(call.action, request)
        if url.startswith(HYPERBEAM_URL) and request.url.path == INFERENCE_PATH:
            self.inference_calls.append(dict(request.url.params))
            response = self.inference_responses.pop(0) if self.inference_responses else "ok"
            if isinstance(response, Exception):
                raise response
            if isinstance(response, httpx.Response):
                return response
            return httpx.Response(200, text=response)
        return httpx.Response(404, text=f"unexpected request {request.method} {url}")

    def _reply(self, action: str, request: httpx.Request) -> httpx.Response:
        queue = self.responses.get(action)
        if not queue:
            return httpx.Response(500, text=f"no scripted response for {action}")
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            return responder(request)
        return httpx.Response(200, json=responder)


def parse_data_item(raw: bytes) -> ParsedDataItem:
    """Decode an ANS-104 data item produced by the client."""

    signature_type = int.from_bytes(raw[0:2], "little")
    signature = raw[2:514]
    owner = raw[514:1026]
    offset = 1026
    target = b""
    if raw[offset] == 1:
        target = raw[offset + 1 : offset + 33]
        offset += 33
    else:
        offset += 1
    anchor = b""
    if raw[offset] == 1:
        anchor = raw[offset + 1 : offset + 33]
        offset += 33
    else:
        offset += 1
    tag_count = int.from_bytes(raw[offset : offset + 8], "little")
    tag_bytes_length = int.from_bytes(raw[offset + 8 : offset + 16], "little")
    offset += 16
    tags = _parse_avro_tags(raw[offset : offset + tag_bytes_length])
    assert len(tags) == tag_count
    return ParsedDataItem(
        signature_type=signature_type,
        signature=signature,
        owner=owner,
        target=target,
        anchor=anchor,
        tags=tags,
        data=raw[offset + tag_bytes_length :],
    )


def _read_long(buffer: bytes, position: int) -> tuple[int, int]:
    shift = 0
    value = 0
    while True:
        byte = buffer[position]
        position += 1
        value |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            break
    return (value >> 1) ^ -(value & 1), position


def _parse_avro_tags(buffer: bytes) -> list[tuple[str, str]]:
    tags: list[tuple[str, str]] = []
    if not buffer:
        return tags
    position = 0
    while True:
        count, position = _read_long(buffer, position)
        if count == 0:
            return tags
        for _ in range(count):
            name_length, position = _read_long(buffer, position)
            name = buffer[position : position + name_length].decode("utf-8")
            position += name_length
            value_length, position = _read_long(buffer, position)
            value = buffer[position : position + value_length].decode("utf-8")
            position += value_length
            tags.append((name, value))


@pytest.fixture()
def ao_network() -> FakeAoNetwork:
    return FakeAoNetwork()


@pytest.fixture()
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture()
def process_client(ao_network: FakeAoNetwork, fake_signer: FakeSigner):
    client = ProcessClient(
        PROCESS_ID,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url=CU_URL, mu_url=MU_URL),
        transport=ao_network.transport(),
    )
    yield client
    client.close()


@pytest.fixture()
def pool_client(process_client: ProcessClient) -> PoolClient:
    return PoolClient(process_client)


@pytest.fixture()
def inference_client(ao_network: FakeAoNetwork):
    client = InferenceClient(HYPERBEAM_URL, transport=ao_network.transport())
    yield client
    client.close()


@pytest.fixture()
def process_id() -> str:
    return PROCESS_ID


@pytest.fixture()
def target_bytes() -> bytes:
    return b64url_decode(PROCESS_ID)


@pytest.fixture()
def data_item_parser() -> Callable[[bytes], ParsedDataItem]:
    return parse_data_item
