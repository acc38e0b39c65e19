"""
realm_bridge.threads.models

Local mirror records for chat threads.

Responsibilities:
- Define threads, participants (bound or placeholder) and mirrored chat messages.
- Derive the cross-realm flag from the participant list instead of storing it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from realm_bridge.backend.base import MessageKind

PLACEHOLDER_PREFIX = "email:"


def placeholder_subject(address: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{address.lower()}"


@dataclass(frozen=True, slots=True)
class Participant:
    """
    A thread member. Placeholders are added by address before the person has signed in;
    they carry no backend identity until reconciliation binds them.
    """

    subject: str
    display_name: str
    address: str
    realm_id: str
    is_external: bool
    identity: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.identity is None and self.subject.startswith(PLACEHOLDER_PREFIX)

    def matches_address(self, address: str) -> bool:
        return bool(address) and self.address.lower() == address.lower()


@dataclass(frozen=True, slots=True)
class Thread:
    id: str
    topic: str
    created_by: str
    created_at: datetime
    participants: tuple[Participant, ...] = ()

    @property
    def is_cross_realm(self) -> bool:
        return any(p.is_external for p in self.participants)

    def has_member(self, subject: str, address: str = "") -> bool:
        return any(p.subject == subject or p.matches_address(address) for p in self.participants)

    def participant_by_address(self, address: str) -> Participant | None:
        return next((p for p in self.participants if p.matches_address(address)), None)

    def with_participant(self, participant: Participant) -> Thread:
        return Thread(
            id=self.id,
            topic=self.topic,
            created_by=self.created_by,
            created_at=self.created_at,
            participants=(*self.participants, participant),
        )


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    thread_id: str
    body: str
    sender_id: str
    sender_name: str
    sent_at: datetime
    kind: MessageKind = MessageKind.text
    sender_subject: str | None = None
    sender_realm: str | None = None


# --- Module Notes -----------------------------------------------------------
# Records are immutable. Membership changes produce a new Thread that the store replaces
# under the service's structural lock.
