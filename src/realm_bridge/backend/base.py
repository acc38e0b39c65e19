"""
realm_bridge.backend.base

Capability contract for the external messaging backend.

Responsibilities:
- Define the operations the bridge consumes from the backend service.
- Define the backend-side records (identity tokens, threads, messages).

Two implementations exist (`memory`, `http`); one is chosen at startup by the composition
root and injected everywhere else.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class MessageKind(enum.StrEnum):
    text = "text"
    system = "system"


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class BackendThread:
    id: str
    topic: str
    participants: tuple[str, ...]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class BackendMessage:
    id: str
    thread_id: str
    body: str
    # Backend identity of the sender, or "system" for service-authored messages.
    sender_id: str
    sender_name: str
    kind: MessageKind
    sent_at: datetime


SYSTEM_SENDER = "system"


class BackendService(Protocol):
    async def create_identity(self) -> str: ...

    async def issue_token(self, identity: str, scopes: Sequence[str]) -> IssuedToken: ...

    async def create_thread(self, topic: str, participants: Sequence[str]) -> BackendThread: ...

    async def add_participant(self, thread_id: str, identity: str) -> None: ...

    async def send_message(
        self,
        thread_id: str,
        body: str,
        *,
        token: str | None,
        sender_name: str,
        kind: MessageKind = MessageKind.text,
    ) -> BackendMessage: ...

    async def list_messages(self, thread_id: str) -> list[BackendMessage]: ...

    async def list_threads(self) -> list[BackendThread]: ...

    async def aclose(self) -> None: ...


# --- Module Notes -----------------------------------------------------------
# `token=None` on send_message means "post as the service identity" and is only used for
# system-authored messages; user messages always carry the sender's exchanged token.
