"""
realm_bridge.threads.store

Local mirror of threads and messages.

Responsibilities:
- Define the `ThreadStore` contract used by the membership service.
- Provide the in-process implementation (`InMemoryThreadStore`).

The SQL implementation lives in `realm_bridge.db.store`. The mirror is a read fallback and
a membership index; the backend stays the system of record for messages.
"""

from __future__ import annotations

from typing import Protocol

from realm_bridge.threads.models import ChatMessage, Thread


class ThreadStore(Protocol):
    async def get(self, thread_id: str) -> Thread | None: ...

    async def save(self, thread: Thread) -> None: ...

    async def all(self) -> list[Thread]: ...

    async def append_message(self, message: ChatMessage) -> None: ...

    async def messages(self, thread_id: str) -> list[ChatMessage]: ...

    async def ping(self) -> None: ...

    async def aclose(self) -> None: ...


class InMemoryThreadStore:
    def __init__(self) -> None:
        self._threads: dict[str, Thread] = {}
        self._messages: dict[str, list[ChatMessage]] = {}

    async def get(self, thread_id: str) -> Thread | None:
        return self._threads.get(thread_id)

    async def save(self, thread: Thread) -> None:
        self._threads[thread.id] = thread

    async def all(self) -> list[Thread]:
        return list(self._threads.values())

    async def append_message(self, message: ChatMessage) -> None:
        msgs = self._messages.setdefault(message.thread_id, [])
        if all(m.id != message.id for m in msgs):
            msgs.append(message)

    async def messages(self, thread_id: str) -> list[ChatMessage]:
        return list(self._messages.get(thread_id, ()))

    async def ping(self) -> None:
        return None

    async def aclose(self) -> None:
        return None
