from __future__ import annotations

import json
import logging

import allure
import httpx
import pytest

from anpm_oracle.process.client import ProcessClient, ProcessEndpoints
from anpm_oracle.process.decoder import data_of, tags_of
from anpm_oracle.process.errors import ProcessError, ProtocolError, RemoteError
from anpm_oracle.process.models import ExecutionMode

pytestmark = [
    allure.epic("Process Messaging"),
    allure.feature("Process Client"),
]


def test_dry_run_posts_tags_and_stringified_payload(process_client, ao_network) -> None:
    ao_network.respond("Has-Pending-Task", ao_network.result(code="200", data="3"))

    result = process_client.dry_run({"Action": "Has-Pending-Task"}, {"probe": 1})

    call = ao_network.calls[0]
    assert call.mode == "dryrun"
    assert call.tags["Action"] == "Has-Pending-Task"
    assert call.tags["Data-Protocol"] == "ao"
    assert call.tags["Type"] == "Message"
    assert call.data == '{"probe":1}'
    assert tags_of(result) == {"Code": "200"}
    assert data_of(result) == 3


def test_dry_run_omits_null_payload_and_forwards_owner(process_id) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"Messages": [], "Spawns": [], "Output": ""})

    with ProcessClient(
        process_id,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=httpx.MockTransport(handler),
    ) as client:
        client.dry_run({"Action": "Info", "Owner": "owner-address"})

    request = captured[0]
    assert request.url.params["process-id"] == process_id
    body = json.loads(request.content)
    assert body["Data"] == ""
    assert body["Owner"] == "owner-address"
    assert body["Target"] == process_id


def test_send_message_signs_and_waits_for_result(
    process_client,
    ao_network,
    fake_signer,
    target_bytes,
) -> None:
    ao_network.respond("Task-Response", ao_network.result(code="200", data="accepted"))

    result = process_client.execute(
        ExecutionMode.COMMIT,
        {"Action": "Task-Response", "X-Reference": "t1"},
        {"output": "42"},
    )

    call = ao_network.calls[0]
    assert call.mode == "message"
    assert call.item is not None
    assert call.item.target == target_bytes
    assert call.item.owner == fake_signer.owner
    assert call.tags["X-Reference"] == "t1"
    assert call.data == '{"output":"42"}'
    assert len(fake_signer.signed) == 1
    assert data_of(result) == "accepted"


def test_send_message_drops_empty_tag_values(process_client, ao_network) -> None:
    ao_network.respond("Add-Task", ao_network.result(code="200"))

    process_client.send_message({"Action": "Add-Task", "Note": ""}, "x")

    assert "Note" not in ao_network.calls[0].tags


def test_commit_requires_signer(ao_network, process_id) -> None:
    client = ProcessClient(
        process_id,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=ao_network.transport(),
    )

    with pytest.raises(ProcessError, match="requires a signer"):
        client.send_message({"Action": "Add-Task"})
    assert ao_network.calls == []


def test_result_error_fails_even_without_status_check(process_client, ao_network) -> None:
    ao_network.respond("Info", ao_network.result(code="200", error="handler crashed"))

    with pytest.raises(RemoteError, match="handler crashed"):
        process_client.dry_run({"Action": "Info"}, check_status=False)


def test_non_200_status_raises_with_payload(process_client, ao_network) -> None:
    ao_network.respond("Info", ao_network.result(status="403", data="denied"))

    with pytest.raises(RemoteError, match="403 denied") as excinfo:
        process_client.dry_run({"Action": "Info"})
    assert excinfo.value.status == "403"


def test_status_check_can_be_disabled(process_client, ao_network) -> None:
    ao_network.respond("Info", ao_network.result(status="500", data="degraded"))

    result = process_client.dry_run({"Action": "Info"}, check_status=False)

    assert tags_of(result)["Status"] == "500"


def test_code_tag_is_not_treated_as_status(process_client, ao_network) -> None:
    ao_network.respond("Get-Pending-Task", ao_network.result(code="403"))

    result = process_client.send_message({"Action": "Get-Pending-Task"})

    assert tags_of(result)["Code"] == "403"


def test_http_error_from_unit_raises_remote_error(process_client, ao_network) -> None:
    ao_network.respond("Info", lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(RemoteError, match="HTTP 502") as excinfo:
        process_client.dry_run({"Action": "Info"})
    assert excinfo.value.status == "502"


def test_non_json_body_raises_protocol_error(process_client, ao_network) -> None:
    ao_network.respond("Info", lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(ProtocolError, match="Could not parse"):
        process_client.dry_run({"Action": "Info"})


def test_timeout_raises_remote_error(process_client, ao_network) -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    ao_network.respond("Info", timeout)

    with pytest.raises(RemoteError, match="Timeout"):
        process_client.dry_run({"Action": "Info"})


def test_messenger_answer_without_id_raises_protocol_error(fake_signer, process_id) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "queued"})

    client = ProcessClient(
        process_id,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(ProtocolError, match="no message id"):
        client.send_message({"Action": "Add-Task"})


def test_debug_mode_logs_round_trip(ao_network, fake_signer, process_id, caplog) -> None:
    ao_network.respond("Info", ao_network.result(code="200"))
    client = ProcessClient(
        process_id,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=ao_network.transport(),
        debug=True,
    )

    with caplog.at_level(logging.DEBUG, logger="anpm_oracle.process.client"):
        client.dry_run({"Action": "Info"})

    assert any("Info dryrun completed" in record.getMessage() for record in caplog.records)


def test_empty_process_id_is_rejected() -> None:
    with pytest.raises(ValueError, match="process_id"):
        ProcessClient("")


def _timeout_on(path_prefix: str, seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.startswith(path_prefix):
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(202, json={"id": "msg-1"})

    return handler


def test_settlement_wait_has_no_read_limit_by_default(fake_signer, process_id) -> None:
    seen: list[httpx.Request] = []
    client = ProcessClient(
        process_id,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=httpx.MockTransport(_timeout_on("/result/", seen)),
        timeout_seconds=5.0,
    )

    with pytest.raises(RemoteError, match="settlement of message msg-1"):
        client.send_message({"Action": "Get-Pending-Task"})

    submit, settle = seen
    assert submit.extensions["timeout"]["read"] == 5.0
    assert settle.extensions["timeout"]["read"] is None
    assert settle.extensions["timeout"]["connect"] == 10.0


def test_settlement_timeout_is_configurable(fake_signer, process_id) -> None:
    seen: list[httpx.Request] = []
    client = ProcessClient(
        process_id,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=httpx.MockTransport(_timeout_on("/result/", seen)),
        settlement_timeout_seconds=300.0,
    )

    with pytest.raises(RemoteError):
        client.send_message({"Action": "Get-Pending-Task"})

    assert seen[-1].extensions["timeout"]["read"] == 300.0


def test_messenger_timeout_is_reported_separately(fake_signer, process_id) -> None:
    seen: list[httpx.Request] = []
    client = ProcessClient(
        process_id,
        signer=fake_signer,
        endpoints=ProcessEndpoints(cu_url="https://cu.test", mu_url="https://mu.test"),
        transport=httpx.MockTransport(_timeout_on("/", seen)),
    )

    with pytest.raises(RemoteError, match="Timeout waiting for messenger unit") as excinfo:
        client.send_message({"Action": "Get-Pending-Task"})

    assert "settlement" not in str(excinfo.value)
    assert len(seen) == 1
