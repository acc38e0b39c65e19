"""
tests.test_http_backend

HTTP messaging backend client: request shape, response parsing and error mapping.
"""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from realm_bridge.backend.base import MessageKind
from realm_bridge.backend.http import HttpBackendService
from realm_bridge.errors import (
    BackendUnavailable,
    BridgeError,
    DelegationDenied,
    ThreadNotFound,
)

CREATED = "2024-05-01T09:00:00+00:00"


def _service(handler) -> HttpBackendService:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://backend.test"
    )
    return HttpBackendService(http=http, access_key="svc-key")


@pytest.mark.asyncio
async def test_service_calls_use_access_key_and_parse_records() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/identities":
            return httpx.Response(201, json={"id": "8:bridge:abc"})
        if request.url.path == "/chat/threads" and request.method == "POST":
            return httpx.Response(
                201,
                json={
                    "id": "19:thread",
                    "topic": "demo",
                    "participants": ["8:bridge:abc"],
                    "created_at": CREATED,
                },
            )
        return httpx.Response(404)

    svc = _service(handler)
    identity = await svc.create_identity()
    thread = await svc.create_thread("demo", [identity])

    assert identity == "8:bridge:abc"
    assert thread.id == "19:thread"
    assert thread.participants == ("8:bridge:abc",)
    assert thread.created_at == datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
    assert all(r.headers["x-access-key"] == "svc-key" for r in seen)
    await svc.aclose()


@pytest.mark.asyncio
async def test_user_messages_carry_the_sender_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            201,
            json={
                "id": "m1",
                "content": "hello",
                "sender_id": "8:bridge:alice",
                "sender_display_name": "Alice",
                "type": "text",
                "created_at": CREATED,
            },
        )

    msg = await _service(handler).send_message(
        "19:thread", "hello", token="bk.alice", sender_name="Alice"
    )

    assert seen[0].headers["authorization"] == "Bearer bk.alice"
    assert "x-access-key" not in seen[0].headers
    assert msg.sender_id == "8:bridge:alice"
    assert msg.kind is MessageKind.text
    assert msg.thread_id == "19:thread"


@pytest.mark.asyncio
async def test_list_messages_reads_value_array() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "value": [
                    {
                        "id": "s1",
                        "content": "created",
                        "sender_id": "system",
                        "type": "system",
                        "created_at": CREATED,
                    },
                    {
                        "id": "m1",
                        "content": "hello",
                        "sender_id": "8:x",
                        "type": "text",
                        "created_at": CREATED,
                    },
                ]
            },
        )

    msgs = await _service(handler).list_messages("19:thread")

    assert [m.id for m in msgs] == ["s1", "m1"]
    assert msgs[0].kind is MessageKind.system


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error"),
    [
        (404, ThreadNotFound),
        (401, DelegationDenied),
        (403, DelegationDenied),
        (429, BackendUnavailable),
        (502, BackendUnavailable),
    ],
)
async def test_status_codes_map_to_typed_errors(status, error) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    with pytest.raises(error):
        await _service(handler).list_messages("19:missing")


@pytest.mark.asyncio
async def test_other_client_errors_stay_generic() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, text="bad body")

    with pytest.raises(BridgeError) as exc:
        await _service(handler).add_participant("19:thread", "8:x")
    assert type(exc.value) is BridgeError


@pytest.mark.asyncio
async def test_timeouts_are_backend_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(BackendUnavailable):
        await _service(handler).list_threads()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"value": [{"content": "x"}]},
        {"value": [{"id": "m1", "created_at": "yesterday"}]},
        {"value": [{"id": "m1", "created_at": CREATED, "type": "sticker"}]},
        {"value": "not-a-list"},
    ],
)
async def test_malformed_message_payload_is_backend_unavailable(payload) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(BackendUnavailable):
        await _service(handler).list_messages("t1")


@pytest.mark.asyncio
async def test_non_json_or_non_object_body_is_backend_unavailable() -> None:
    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy</html>")

    def array(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json=["8:bridge:abc"])

    with pytest.raises(BackendUnavailable):
        await _service(html).list_threads()
    with pytest.raises(BackendUnavailable):
        await _service(array).create_identity()


@pytest.mark.asyncio
async def test_malformed_token_payload_is_backend_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token": "tok"})

    with pytest.raises(BackendUnavailable):
        await _service(handler).issue_token("8:bridge:abc", ["voip"])
