"""
realm_bridge.identity.cache

Maps `(subject, realm)` to a stable backend identity handle.

Responsibilities:
- Create one backend identity per subject lazily and reuse it (fixed TTL from creation).
- Serialize creation per key: the backend has no create-if-absent primitive, so two
  concurrent misses must not create two identities.
- Reverse-lookup a handle to the subject it belongs to (message attribution).
"""

from __future__ import annotations

from datetime import timedelta

from realm_bridge.backend.base import BackendService
from realm_bridge.caching import Clock, KeyedLocks, TTLCache, utcnow
from realm_bridge.observability.logging import get_logger

log = get_logger(__name__)

IdentityKey = tuple[str, str]


class IdentityCache:
    def __init__(
        self,
        backend: BackendService,
        *,
        ttl: timedelta = timedelta(hours=24),
        clock: Clock = utcnow,
    ) -> None:
        self._backend = backend
        self._ttl = ttl
        self._handles: TTLCache[IdentityKey, str] = TTLCache(clock=clock)
        self._owners: TTLCache[str, IdentityKey] = TTLCache(clock=clock)
        self._locks: KeyedLocks[IdentityKey] = KeyedLocks()

    async def get_or_create(self, subject: str, realm_id: str) -> str:
        key = (subject, realm_id)
        handle = self._handles.get(key)
        if handle is not None:
            return handle

        async with self._locks(key):
            # Another caller may have populated the entry while we waited.
            handle = self._handles.get(key)
            if handle is not None:
                return handle
            # Failures propagate; nothing is cached on a failed creation.
            handle = await self._backend.create_identity()
            self._handles.set(key, handle, self._ttl)
            self._owners.set(handle, key, self._ttl)
            log.info("backend_identity_created", subject=subject, realm=realm_id, identity=handle)
            return handle

    def peek(self, subject: str, realm_id: str) -> str | None:
        return self._handles.get((subject, realm_id))

    def owner_of(self, handle: str) -> IdentityKey | None:
        return self._owners.get(handle)


# --- Module Notes -----------------------------------------------------------
# Identity and token caching are deliberately separate: who a user is on the backend
# outlives any single token they hold.
