"""
realm_bridge.backend.http

HTTP client boundary for a live messaging backend.

Responsibilities:
- Call the backend's identity and chat endpoints over httpx.
- Authenticate service-level calls with the host realm's access key.
- Send user messages with the user's own exchanged token (attribution stays with the user).
- Translate transport/status failures into the bridge error taxonomy.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import httpx

from realm_bridge.backend.base import BackendMessage, BackendThread, IssuedToken, MessageKind
from realm_bridge.errors import BackendUnavailable, BridgeError, DelegationDenied, ThreadNotFound


class HttpBackendService:
    def __init__(self, *, http: httpx.AsyncClient, access_key: str) -> None:
        self._http = http
        self._access_key = access_key

    def _service_headers(self) -> dict[str, str]:
        return {"x-access-key": self._access_key}

    async def create_identity(self) -> str:
        data = await self._request("POST", "/identities", headers=self._service_headers())
        with _decoding("identity"):
            return str(data["id"])

    async def issue_token(self, identity: str, scopes: Sequence[str]) -> IssuedToken:
        data = await self._request(
            "POST",
            f"/identities/{identity}/token",
            headers=self._service_headers(),
            json={"scopes": list(scopes)},
        )
        with _decoding("token"):
            return IssuedToken(token=str(data["token"]), expires_at=_parse_dt(data["expires_on"]))

    async def create_thread(self, topic: str, participants: Sequence[str]) -> BackendThread:
        data = await self._request(
            "POST",
            "/chat/threads",
            headers=self._service_headers(),
            json={"topic": topic, "participants": list(participants)},
        )
        with _decoding("thread"):
            return _thread(data)

    async def add_participant(self, thread_id: str, identity: str) -> None:
        await self._request(
            "POST",
            f"/chat/threads/{thread_id}/participants",
            headers=self._service_headers(),
            json={"identity": identity},
            thread_id=thread_id,
        )

    async def send_message(
        self,
        thread_id: str,
        body: str,
        *,
        token: str | None,
        sender_name: str,
        kind: MessageKind = MessageKind.text,
    ) -> BackendMessage:
        headers = self._service_headers() if token is None else {"Authorization": f"Bearer {token}"}
        data = await self._request(
            "POST",
            f"/chat/threads/{thread_id}/messages",
            headers=headers,
            json={"content": body, "sender_display_name": sender_name, "type": kind.value},
            thread_id=thread_id,
        )
        with _decoding("message"):
            return _message(data, thread_id=thread_id)

    async def list_messages(self, thread_id: str) -> list[BackendMessage]:
        data = await self._request(
            "GET",
            f"/chat/threads/{thread_id}/messages",
            headers=self._service_headers(),
            thread_id=thread_id,
        )
        with _decoding("message list"):
            return [_message(m, thread_id=thread_id) for m in data.get("value", [])]

    async def list_threads(self) -> list[BackendThread]:
        data = await self._request("GET", "/chat/threads", headers=self._service_headers())
        with _decoding("thread list"):
            return [_thread(t) for t in data.get("value", [])]

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: dict[str, Any] | None = None,
        thread_id: str | None = None,
    ) -> dict[str, Any]:
        try:
            r = await self._http.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"backend timed out: {method} {url}") from e
        except httpx.TransportError as e:
            raise BackendUnavailable(f"backend unreachable: {e}") from e

        if r.status_code == 404 and thread_id is not None:
            raise ThreadNotFound(thread_id)
        if r.status_code in (401, 403):
            raise DelegationDenied(
                f"backend rejected credentials ({r.status_code}): {r.text}",
                error_code=str(r.status_code),
            )
        if r.status_code == 429 or r.status_code >= 500:
            raise BackendUnavailable(f"backend error {r.status_code}: {r.text}")
        if r.status_code >= 400:
            raise BridgeError(f"backend rejected {method} {url} ({r.status_code}): {r.text}")
        if not r.content:
            return {}
        try:
            data = r.json()
        except ValueError as e:
            raise BackendUnavailable(f"backend returned a non-JSON body: {method} {url}") from e
        if not isinstance(data, dict):
            raise BackendUnavailable(f"backend returned an unexpected body: {method} {url}")
        return data


@contextmanager
def _decoding(what: str) -> Iterator[None]:
    # A payload missing fields or holding bad values is an outage of the backend contract.
    try:
        yield
    except (KeyError, TypeError, ValueError) as e:
        raise BackendUnavailable(f"backend returned a malformed {what}: {e!r}") from e


def _parse_dt(raw: Any) -> datetime:
    return datetime.fromisoformat(str(raw))


def _thread(data: dict[str, Any]) -> BackendThread:
    return BackendThread(
        id=str(data["id"]),
        topic=str(data.get("topic", "")),
        participants=tuple(str(p) for p in data.get("participants", [])),
        created_at=_parse_dt(data["created_at"]),
    )


def _message(data: dict[str, Any], *, thread_id: str) -> BackendMessage:
    return BackendMessage(
        id=str(data["id"]),
        thread_id=thread_id,
        body=str(data.get("content", "")),
        sender_id=str(data.get("sender_id", "")),
        sender_name=str(data.get("sender_display_name", "")),
        kind=MessageKind(data.get("type", MessageKind.text.value)),
        sent_at=_parse_dt(data["created_at"]),
    )


# --- Module Notes -----------------------------------------------------------
# The httpx client (base_url, timeout) is built by the composition root; this class owns
# closing it. Deadlines are also enforced by the caller with asyncio.timeout.
