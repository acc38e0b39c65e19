"""
realm_bridge.db.store

SQL-backed `ThreadStore`.

Responsibilities:
- Persist mirrored threads (with ordered participants) and messages.
- Convert between ORM rows and the immutable mirror records.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from realm_bridge.db.models import MessageRow, ParticipantRow, ThreadRow
from realm_bridge.threads.models import ChatMessage, Participant, Thread


class SqlThreadStore:
    def __init__(self, *, engine: AsyncEngine, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._engine = engine
        self._sessions = sessions

    async def get(self, thread_id: str) -> Thread | None:
        async with self._sessions() as session:
            row = await session.get(ThreadRow, thread_id)
            return _thread(row) if row is not None else None

    async def save(self, thread: Thread) -> None:
        async with self._sessions() as session, session.begin():
            row = await session.get(ThreadRow, thread.id)
            if row is None:
                row = ThreadRow(
                    id=thread.id,
                    topic=thread.topic,
                    created_by=thread.created_by,
                    created_at=thread.created_at,
                )
                session.add(row)
            else:
                row.topic = thread.topic
            # Participants are replaced wholesale; delete-orphan drops the previous rows.
            row.participants = [
                ParticipantRow(
                    position=i,
                    subject=p.subject,
                    display_name=p.display_name,
                    address=p.address,
                    realm_id=p.realm_id,
                    is_external=p.is_external,
                    identity=p.identity,
                )
                for i, p in enumerate(thread.participants)
            ]

    async def all(self) -> list[Thread]:
        async with self._sessions() as session:
            rows = (await session.execute(select(ThreadRow))).scalars().all()
            return [_thread(r) for r in rows]

    async def append_message(self, message: ChatMessage) -> None:
        async with self._sessions() as session, session.begin():
            stmt = select(MessageRow.seq).where(MessageRow.id == message.id)
            if (await session.execute(stmt)).scalar_one_or_none() is not None:
                return
            session.add(
                MessageRow(
                    id=message.id,
                    thread_id=message.thread_id,
                    body=message.body,
                    kind=message.kind,
                    sender_id=message.sender_id,
                    sender_name=message.sender_name,
                    sender_subject=message.sender_subject,
                    sender_realm=message.sender_realm,
                    sent_at=message.sent_at,
                )
            )

    async def messages(self, thread_id: str) -> list[ChatMessage]:
        stmt = select(MessageRow).where(MessageRow.thread_id == thread_id).order_by(MessageRow.seq)
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_message(r) for r in rows]

    async def ping(self) -> None:
        async with self._sessions() as session:
            await session.execute(text("SELECT 1"))

    async def aclose(self) -> None:
        await self._engine.dispose()


def _aware(dt: datetime) -> datetime:
    # SQLite drops tzinfo; every timestamp written here is UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def _thread(row: ThreadRow) -> Thread:
    return Thread(
        id=row.id,
        topic=row.topic,
        created_by=row.created_by,
        created_at=_aware(row.created_at),
        participants=tuple(
            Participant(
                subject=p.subject,
                display_name=p.display_name,
                address=p.address,
                realm_id=p.realm_id,
                is_external=p.is_external,
                identity=p.identity,
            )
            for p in row.participants
        ),
    )


def _message(row: MessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        thread_id=row.thread_id,
        body=row.body,
        sender_id=row.sender_id,
        sender_name=row.sender_name,
        sent_at=_aware(row.sent_at),
        kind=row.kind,
        sender_subject=row.sender_subject,
        sender_realm=row.sender_realm,
    )


# --- Module Notes -----------------------------------------------------------
# Each call uses its own short session; the membership service's structural lock is what
# serializes read-modify-write sequences across calls.
