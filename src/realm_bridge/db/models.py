"""
realm_bridge.db.models

Persistence schema for the thread mirror.

Responsibilities:
- Define ORM models for mirrored state:
  - ThreadRow: thread header (topic, creator, creation time)
  - ParticipantRow: ordered participant list, bound or placeholder
  - MessageRow: mirrored chat messages used as a read fallback
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from realm_bridge.backend.base import MessageKind
from realm_bridge.db.base import Base


class ThreadRow(Base):
    __tablename__ = "threads"

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    topic: Mapped[str] = mapped_column(String(512), nullable=False)
    created_by: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Eager "selectin" loading: async sessions cannot lazy-load on attribute access.
    participants: Mapped[list[ParticipantRow]] = relationship(
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ParticipantRow.position",
        lazy="selectin",
    )


class ParticipantRow(Base):
    __tablename__ = "thread_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[str] = mapped_column(
        String(256), ForeignKey("threads.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    subject: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    address: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    realm_id: Mapped[str] = mapped_column(String(128), nullable=False)
    is_external: Mapped[bool] = mapped_column(nullable=False, default=False)
    # NULL for placeholders that have not been bound to a backend identity.
    identity: Mapped[str | None] = mapped_column(String(256), nullable=True)

    thread: Mapped[ThreadRow] = relationship(back_populates="participants")


class MessageRow(Base):
    __tablename__ = "thread_messages"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    thread_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)

    body: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[MessageKind] = mapped_column(Enum(MessageKind), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(256), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    sender_subject: Mapped[str | None] = mapped_column(String(256), nullable=True)
    sender_realm: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_thread_messages_thread_seq", "thread_id", "seq"),)
