"""
realm_bridge.backend.memory

In-process messaging backend for local development and tests.

Responsibilities:
- Issue opaque identities and time-bound access tokens.
- Own threads, participant lists and messages (the backend is the system of record).
- Attribute each user message to the identity its token was issued for.
- Count remote-style calls so tests can assert on side effects.
"""

from __future__ import annotations

import secrets
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from realm_bridge.backend.base import (
    SYSTEM_SENDER,
    BackendMessage,
    BackendThread,
    IssuedToken,
    MessageKind,
)
from realm_bridge.caching import Clock, utcnow
from realm_bridge.errors import DelegationDenied, ThreadNotFound


@dataclass(slots=True)
class _ThreadRecord:
    id: str
    topic: str
    created_at: datetime
    participants: list[str] = field(default_factory=list)
    messages: list[BackendMessage] = field(default_factory=list)


class InMemoryBackendService:
    def __init__(
        self,
        *,
        token_lifetime: timedelta = timedelta(minutes=60),
        clock: Clock = utcnow,
    ) -> None:
        self._token_lifetime = token_lifetime
        self._clock = clock
        self._identities: set[str] = set()
        self._tokens: dict[str, tuple[str, datetime]] = {}
        self._threads: dict[str, _ThreadRecord] = {}
        self.calls: Counter[str] = Counter()

    async def create_identity(self) -> str:
        self.calls["create_identity"] += 1
        identity = f"8:bridge:{uuid.uuid4()}"
        self._identities.add(identity)
        return identity

    async def issue_token(self, identity: str, scopes: Sequence[str]) -> IssuedToken:
        self.calls["issue_token"] += 1
        if identity not in self._identities:
            raise DelegationDenied(
                f"unknown backend identity: {identity}", error_code="invalid_identity"
            )
        token = f"bk.{secrets.token_urlsafe(24)}"
        expires_at = self._clock() + self._token_lifetime
        self._tokens[token] = (identity, expires_at)
        return IssuedToken(token=token, expires_at=expires_at)

    async def create_thread(self, topic: str, participants: Sequence[str]) -> BackendThread:
        self.calls["create_thread"] += 1
        record = _ThreadRecord(
            id=f"thread_{uuid.uuid4().hex}",
            topic=topic,
            created_at=self._clock(),
            participants=list(dict.fromkeys(participants)),
        )
        self._threads[record.id] = record
        return self._snapshot(record)

    async def add_participant(self, thread_id: str, identity: str) -> None:
        self.calls["add_participant"] += 1
        record = self._thread(thread_id)
        if identity not in record.participants:
            record.participants.append(identity)

    async def send_message(
        self,
        thread_id: str,
        body: str,
        *,
        token: str | None,
        sender_name: str,
        kind: MessageKind = MessageKind.text,
    ) -> BackendMessage:
        self.calls["send_message"] += 1
        record = self._thread(thread_id)
        sender_id = SYSTEM_SENDER if token is None else self._identity_for(token)
        message = BackendMessage(
            id=str(uuid.uuid4()),
            thread_id=thread_id,
            body=body,
            sender_id=sender_id,
            sender_name=sender_name,
            kind=kind,
            sent_at=self._clock(),
        )
        record.messages.append(message)
        return message

    async def list_messages(self, thread_id: str) -> list[BackendMessage]:
        self.calls["list_messages"] += 1
        return list(self._thread(thread_id).messages)

    async def list_threads(self) -> list[BackendThread]:
        self.calls["list_threads"] += 1
        return [self._snapshot(r) for r in self._threads.values()]

    async def aclose(self) -> None:
        return None

    def _thread(self, thread_id: str) -> _ThreadRecord:
        record = self._threads.get(thread_id)
        if record is None:
            raise ThreadNotFound(thread_id)
        return record

    def _identity_for(self, token: str) -> str:
        entry = self._tokens.get(token)
        if entry is None:
            raise DelegationDenied("backend rejected access token", error_code="invalid_token")
        identity, expires_at = entry
        if expires_at <= self._clock():
            raise DelegationDenied("backend access token expired", error_code="token_expired")
        return identity

    @staticmethod
    def _snapshot(record: _ThreadRecord) -> BackendThread:
        return BackendThread(
            id=record.id,
            topic=record.topic,
            participants=tuple(record.participants),
            created_at=record.created_at,
        )


# --- Module Notes -----------------------------------------------------------
# Returned records are immutable snapshots, so callers cannot mutate stored messages.
