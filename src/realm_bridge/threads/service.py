"""
realm_bridge.threads.service

Membership & thread state on top of the messaging backend.

Responsibilities:
- Create threads with the creator bound and well-known counterparts added as placeholders.
- Add participants, reconciling a matching placeholder instead of duplicating it.
- Send messages with the sender's own exchanged token, so the backend attributes them to
  the sender's backend identity.
- List messages as a pure projection of the backend read, degrading to the local mirror.
- List a principal's threads after reconciling placeholders bound to their address.
- Record each unit of work in the operation ledger.

Failure policy:
- Actions with external side effects (create, add, send) surface backend failures.
- Reads (`list_messages`, `list_threads_for`) fall back to the mirror where it can answer.
- System messages announce an already committed change and never fail it.
- A send whose token the backend rejects drops that cached token; the caller decides on retry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence
from datetime import timedelta
from typing import TypeVar

from realm_bridge.auth.models import Principal
from realm_bridge.backend.base import (
    SYSTEM_SENDER,
    BackendMessage,
    BackendService,
    BackendThread,
    MessageKind,
)
from realm_bridge.caching import Clock, TTLCache, utcnow
from realm_bridge.errors import BackendUnavailable, BridgeError, DelegationDenied, ThreadNotFound
from realm_bridge.exchange.engine import TokenExchangeEngine
from realm_bridge.identity.cache import IdentityCache
from realm_bridge.observability.logging import get_logger
from realm_bridge.realms.registry import RealmRegistry
from realm_bridge.threads.models import ChatMessage, Participant, Thread
from realm_bridge.threads.reconcile import reconcile_membership
from realm_bridge.threads.store import ThreadStore
from realm_bridge.tracking.tracker import OperationTracker, TrackedOperation

log = get_logger(__name__)

T = TypeVar("T")

SYSTEM_NAME = "System"


class ThreadService:
    def __init__(
        self,
        *,
        registry: RealmRegistry,
        engine: TokenExchangeEngine,
        identities: IdentityCache,
        backend: BackendService,
        store: ThreadStore,
        tracker: OperationTracker,
        default_participants: Sequence[Participant] = (),
        current_thread_ttl: timedelta = timedelta(hours=2),
        backend_timeout: float | None = 10.0,
        list_all_threads: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._engine = engine
        self._identities = identities
        self._backend = backend
        self._store = store
        self._tracker = tracker
        self._defaults = tuple(default_participants)
        self._current_ttl = current_thread_ttl
        self._timeout = backend_timeout
        self._list_all = list_all_threads
        self._current: TTLCache[tuple[str, str], str] = TTLCache(clock=clock)
        # Serializes read-modify-write of mirrored threads.
        self._lock = asyncio.Lock()

    async def create_thread(
        self, topic: str, creator: Principal, *, force_new: bool = False
    ) -> Thread:
        with self._tracker.track(
            "ThreadCreation",
            f"Create chat thread '{topic}'",
            subject=creator.subject,
            realm=creator.realm_id,
        ) as op:
            if not force_new:
                current = await self._cached_current(creator)
                if current is not None:
                    op.step(
                        "CheckCurrentThread",
                        "Returning existing current thread",
                        metadata={"thread_id": current.id},
                    )
                    return current

            token = await self._engine.exchange(creator.credential, timeout=self._timeout)
            op.step(
                "AcquireToken",
                "Backend token ready for creator",
                metadata={"identity": token.identity},
            )

            created: BackendThread = await self._call(
                self._backend.create_thread(topic, [token.identity])
            )
            op.step(
                "CreateBackendThread",
                "Backend allocated thread",
                metadata={"thread_id": created.id},
            )

            participants = [_bound(creator, token.identity)]
            for default in self._defaults:
                if any(p.matches_address(default.address) for p in participants):
                    continue
                participants.append(default)
            thread = Thread(
                id=created.id,
                topic=topic,
                created_by=creator.subject,
                created_at=created.created_at,
                participants=tuple(participants),
            )
            async with self._lock:
                await self._store.save(thread)
            self._current.set(creator.key, thread.id, self._current_ttl)
            op.step(
                "MirrorThread",
                f"Mirrored thread with {len(participants) - 1} additional participant(s)",
                metadata={
                    "placeholders": [p.address for p in participants if p.is_placeholder],
                    "cross_realm": thread.is_cross_realm,
                },
            )

            welcome = [
                f"Chat thread '{topic}' created by {creator.display_name} ({creator.realm_id})"
            ]
            if creator.is_external:
                welcome.append(
                    f"Cross-realm chat enabled: {creator.display_name} from {creator.realm_id} "
                    f"connected to {self._registry.host.realm_id} resources"
                )
            await self._announce(op, thread.id, welcome, "Welcome message posted")

            log.info(
                "thread_created",
                thread_id=thread.id,
                subject=creator.subject,
                realm=creator.realm_id,
                cross_realm=thread.is_cross_realm,
            )
            return thread

    async def current_thread(self, principal: Principal) -> Thread | None:
        thread = await self._cached_current(principal)
        if thread is not None:
            return thread
        for candidate in _newest_first(await self._store.all()):
            if candidate.has_member(principal.subject, principal.address):
                self._current.set(principal.key, candidate.id, self._current_ttl)
                return candidate
        return None

    async def add_participant(self, thread_id: str, principal: Principal) -> Thread:
        with self._tracker.track(
            "ParticipantAdd",
            f"Add participant to thread {thread_id}",
            subject=principal.subject,
            realm=principal.realm_id,
        ) as op:
            thread = await self._store.get(thread_id)
            if thread is None:
                raise ThreadNotFound(thread_id)
            existing = _membership(thread, principal)
            if existing is not None and not existing.is_placeholder:
                op.step("CheckMembership", "Principal is already a participant")
                return thread

            identity = await self._identity_for(principal)
            op.step("EnsureIdentity", "Backend identity ready", metadata={"identity": identity})
            await self._call(self._backend.add_participant(thread_id, identity))
            op.step("JoinBackendThread", "Backend participant list updated")

            async with self._lock:
                thread = await self._store.get(thread_id)
                if thread is None:
                    raise ThreadNotFound(thread_id)
                if existing is not None:
                    thread = reconcile_membership([thread], principal, identity).threads[0]
                    step = "Bound placeholder participant"
                elif _membership(thread, principal) is None:
                    thread = thread.with_participant(_bound(principal, identity))
                    step = "Appended participant"
                else:
                    step = "Participant added concurrently"
                await self._store.save(thread)
            op.step("MirrorParticipant", step, metadata={"cross_realm": thread.is_cross_realm})

            suffix = ""
            if principal.is_external:
                suffix = f" (cross-realm user from {principal.realm_id})"
            await self._announce(
                op,
                thread_id,
                [f"{principal.display_name} from {principal.realm_id} joined the chat{suffix}"],
                "Join announced",
            )
            return thread

    async def send_message(self, thread_id: str, body: str, sender: Principal) -> ChatMessage:
        with self._tracker.track(
            "MessageSend",
            f"Send message to thread {thread_id}",
            subject=sender.subject,
            realm=sender.realm_id,
        ) as op:
            token = await self._engine.exchange(sender.credential, timeout=self._timeout)
            op.step("AcquireToken", "Sender token ready", metadata={"identity": token.identity})

            try:
                sent = await self._call(
                    self._backend.send_message(
                        thread_id, body, token=token.access_token, sender_name=sender.display_name
                    )
                )
            except DelegationDenied as e:
                # The backend no longer honours this token; the next send exchanges afresh.
                self._engine.invalidate(sender.subject, sender.realm_id)
                op.step(
                    "DeliverMessage",
                    "Backend rejected sender token",
                    success=False,
                    error=str(e),
                    metadata={"code": e.code, "token_invalidated": True},
                )
                raise
            op.step(
                "DeliverMessage",
                "Message accepted by backend",
                metadata={"message_id": sent.id, "sender_id": sent.sender_id},
            )

            message = self._project(sent)
            await self._store.append_message(message)
            if sender.is_external:
                op.step(
                    "CrossRealmMessage",
                    f"Message from realm {sender.realm_id} delivered through host realm backend",
                )
            return message

    async def list_messages(self, thread_id: str) -> list[ChatMessage]:
        try:
            raw = await self._call(self._backend.list_messages(thread_id))
        except BackendUnavailable as e:
            if await self._store.get(thread_id) is None:
                raise
            log.warning("list_messages_fallback", thread_id=thread_id, reason=e.code, error=str(e))
            return await self._store.messages(thread_id)
        except ThreadNotFound:
            if await self._store.get(thread_id) is None:
                raise
            log.warning("list_messages_fallback", thread_id=thread_id, reason=ThreadNotFound.code)
            return await self._store.messages(thread_id)
        return [self._project(m) for m in raw]

    async def list_threads_for(
        self, principal: Principal, *, include_all: bool = False
    ) -> list[Thread]:
        with self._tracker.track(
            "Reconcile",
            "Reconcile membership and list threads",
            subject=principal.subject,
            realm=principal.realm_id,
        ) as op:
            await self._reconcile(principal, op)
            await self._adopt(principal, op)

            unrestricted = include_all or self._list_all
            threads = await self._store.all()
            if not unrestricted:
                threads = [t for t in threads if t.has_member(principal.subject, principal.address)]
            op.step(
                "ListThreads",
                f"Listed {len(threads)} thread(s)",
                metadata={"unrestricted": unrestricted},
            )
            return _newest_first(threads)

    async def _reconcile(self, principal: Principal, op: TrackedOperation) -> None:
        pending = [t for t in await self._store.all() if _has_placeholder_for(t, principal)]
        if not pending:
            op.step("ReconcileMembership", "No placeholders match principal")
            return

        try:
            identity = await self._identity_for(principal)
        except BridgeError as e:
            # Placeholders stay unbound and are retried on the next listing.
            op.step(
                "EnsureIdentity",
                "Could not obtain backend identity",
                success=False,
                error=str(e),
            )
            return

        joined: list[Thread] = []
        for thread in pending:
            try:
                await self._call(self._backend.add_participant(thread.id, identity))
            except BridgeError as e:
                op.step(
                    "JoinBackendThread",
                    f"Backend join failed for thread {thread.id}",
                    success=False,
                    error=str(e),
                    metadata={"thread_id": thread.id},
                )
                continue
            joined.append(thread)

        async with self._lock:
            current = [t for t in [await self._store.get(j.id) for j in joined] if t is not None]
            result = reconcile_membership(current, principal, identity)
            for thread in result.changed_threads():
                await self._store.save(thread)
        op.step(
            "ReconcileMembership",
            f"Bound placeholders in {len(result.changed)} thread(s)",
            metadata={"threads": sorted(result.changed)},
        )
        if result.changed:
            log.info(
                "placeholders_reconciled",
                subject=principal.subject,
                threads=sorted(result.changed),
            )

    async def _adopt(self, principal: Principal, op: TrackedOperation) -> None:
        # Pull in backend threads the principal belongs to that the mirror has not seen.
        identity = self._identities.peek(principal.subject, principal.realm_id)
        if identity is None:
            return
        try:
            remote = await self._call(self._backend.list_threads())
        except BackendUnavailable as e:
            op.step(
                "AdoptBackendThreads",
                "Backend unavailable, using mirror only",
                success=False,
                error=str(e),
            )
            return

        adopted: list[str] = []
        async with self._lock:
            for bt in remote:
                if identity not in bt.participants or await self._store.get(bt.id) is not None:
                    continue
                await self._store.save(self._adopted_thread(bt, principal, identity))
                adopted.append(bt.id)
        if adopted:
            op.step(
                "AdoptBackendThreads",
                f"Adopted {len(adopted)} backend thread(s)",
                metadata={"threads": adopted},
            )

    def _adopted_thread(self, bt: BackendThread, principal: Principal, identity: str) -> Thread:
        participants: list[Participant] = []
        for handle in bt.participants:
            if handle == identity:
                participants.append(_bound(principal, identity))
                continue
            owner = self._identities.owner_of(handle)
            if owner is None:
                continue
            subject, realm_id = owner
            participants.append(
                Participant(
                    subject=subject,
                    display_name=subject,
                    address="",
                    realm_id=realm_id,
                    is_external=self._registry.is_external(realm_id),
                    identity=handle,
                )
            )
        creator = self._identities.owner_of(bt.participants[0]) if bt.participants else None
        return Thread(
            id=bt.id,
            topic=bt.topic,
            created_by=creator[0] if creator else principal.subject,
            created_at=bt.created_at,
            participants=tuple(participants),
        )

    async def _cached_current(self, principal: Principal) -> Thread | None:
        thread_id = self._current.get(principal.key)
        if thread_id is None:
            return None
        thread = await self._store.get(thread_id)
        if thread is None:
            self._current.pop(principal.key)
        return thread

    async def _identity_for(self, principal: Principal) -> str:
        return await self._call(
            self._identities.get_or_create(principal.subject, principal.realm_id)
        )

    async def _announce(
        self, op: TrackedOperation, thread_id: str, bodies: Sequence[str], done: str
    ) -> None:
        # Announcements follow an already committed change; failures are recorded, not raised.
        try:
            for body in bodies:
                await self._system_message(thread_id, body)
        except BridgeError as e:
            op.step(
                "SystemMessage",
                "System message not posted",
                success=False,
                error=str(e),
                metadata={"code": e.code},
            )
            log.warning("system_message_failed", thread_id=thread_id, code=e.code, error=str(e))
        else:
            op.step("SystemMessage", done)

    async def _system_message(self, thread_id: str, body: str) -> None:
        sent = await self._call(
            self._backend.send_message(
                thread_id, body, token=None, sender_name=SYSTEM_NAME, kind=MessageKind.system
            )
        )
        await self._store.append_message(self._project(sent))

    def _project(self, m: BackendMessage) -> ChatMessage:
        owner = None if m.sender_id == SYSTEM_SENDER else self._identities.owner_of(m.sender_id)
        return ChatMessage(
            id=m.id,
            thread_id=m.thread_id,
            body=m.body,
            sender_id=m.sender_id,
            sender_name=m.sender_name,
            sent_at=m.sent_at,
            kind=m.kind,
            sender_subject=owner[0] if owner else None,
            sender_realm=owner[1] if owner else None,
        )

    async def _call(self, aw: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout(self._timeout):
                return await aw
        except TimeoutError as e:
            raise BackendUnavailable(f"backend call timed out after {self._timeout}s") from e


def _bound(principal: Principal, identity: str) -> Participant:
    return Participant(
        subject=principal.subject,
        display_name=principal.display_name,
        address=principal.address,
        realm_id=principal.realm_id,
        is_external=principal.is_external,
        identity=identity,
    )


def _membership(thread: Thread, principal: Principal) -> Participant | None:
    for p in thread.participants:
        if p.subject == principal.subject and p.realm_id == principal.realm_id:
            return p
    return thread.participant_by_address(principal.address)


def _has_placeholder_for(thread: Thread, principal: Principal) -> bool:
    return any(
        p.is_placeholder and p.matches_address(principal.address) for p in thread.participants
    )


def _newest_first(threads: Sequence[Thread]) -> list[Thread]:
    return sorted(threads, key=lambda t: t.created_at, reverse=True)


# --- Module Notes -----------------------------------------------------------
# Messages are never rewritten on read. Presentation concerns such as marking cross-realm
# senders belong to consumers, which have `sender_realm` to work with.
