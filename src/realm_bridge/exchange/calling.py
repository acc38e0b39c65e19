"""
realm_bridge.exchange.calling

Calling tokens: backend tokens with the calling scope set, issued by the backend itself.

Responsibilities:
- Reuse the principal's stable backend identity (the same one chat uses).
- Issue a token for the configured calling scopes and cache it per `(subject, realm)`.
- Refresh once the cached token is inside its own margin; coalesce concurrent refreshes.
- Record each issuance in the operation ledger.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import timedelta

from realm_bridge.auth.models import Principal
from realm_bridge.backend.base import BackendService
from realm_bridge.caching import Clock, KeyedLocks, TTLCache, utcnow
from realm_bridge.errors import BackendUnavailable, BridgeError
from realm_bridge.exchange.models import ExchangedToken
from realm_bridge.identity.cache import IdentityCache
from realm_bridge.observability.logging import get_logger
from realm_bridge.tracking.tracker import OperationTracker, TrackedOperation

log = get_logger(__name__)


class CallingTokenIssuer:
    def __init__(
        self,
        *,
        identities: IdentityCache,
        backend: BackendService,
        tracker: OperationTracker,
        scopes: Sequence[str] = ("voip",),
        refresh_margin: timedelta = timedelta(minutes=5),
        cache_floor: timedelta = timedelta(minutes=10),
        timeout: float | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._identities = identities
        self._backend = backend
        self._tracker = tracker
        self._scopes = tuple(scopes)
        self._margin = refresh_margin
        self._floor = cache_floor
        self._timeout = timeout
        self._clock = clock
        self._tokens: TTLCache[tuple[str, str], ExchangedToken] = TTLCache(clock=clock)
        self._locks: KeyedLocks[tuple[str, str]] = KeyedLocks()

    @property
    def enabled(self) -> bool:
        return bool(self._scopes)

    async def issue(self, principal: Principal) -> ExchangedToken:
        with self._tracker.track(
            "CallingToken",
            "Issue calling-scoped backend token",
            subject=principal.subject,
            realm=principal.realm_id,
        ) as op:
            cached = self._usable(principal)
            if cached is not None:
                op.step("CheckCache", "Calling token cache hit")
                return cached
            op.step("CheckCache", "Calling token cache miss")

            try:
                async with asyncio.timeout(self._timeout):
                    async with self._locks(principal.key):
                        cached = self._usable(principal)
                        if cached is not None:
                            op.step("CheckCache", "Calling token issued by concurrent request")
                            return cached

                        identity = await self._identities.get_or_create(
                            principal.subject, principal.realm_id
                        )
                        op.step(
                            "EnsureIdentity",
                            "Backend identity ready",
                            metadata={"identity": identity},
                        )
                        issued = await self._backend.issue_token(identity, self._scopes)
                        token = ExchangedToken(
                            access_token=issued.token,
                            identity=identity,
                            subject=principal.subject,
                            realm_id=principal.realm_id,
                            expires_at=issued.expires_at,
                            scopes=self._scopes,
                        )
                        ttl = issued.expires_at - self._clock() - self._margin
                        if ttl <= timedelta(0):
                            ttl = self._floor
                        self._tokens.set(principal.key, token, ttl)
            except TimeoutError as e:
                timed_out = BackendUnavailable(
                    f"calling token issuance timed out after {self._timeout}s"
                )
                self._failed(op, timed_out)
                raise timed_out from e
            except BridgeError as e:
                self._failed(op, e)
                raise

            op.step(
                "IssueToken",
                "Calling token issued",
                metadata={"scopes": list(self._scopes), "expires_at": issued.expires_at},
            )
            log.info(
                "calling_token_issued",
                subject=principal.subject,
                realm=principal.realm_id,
                identity=identity,
            )
            return token

    @staticmethod
    def _failed(op: TrackedOperation, e: BridgeError) -> None:
        op.step(
            "IssueToken",
            "Calling token issuance failed",
            success=False,
            error=str(e),
            metadata={"code": e.code},
        )

    def _usable(self, principal: Principal) -> ExchangedToken | None:
        token = self._tokens.get(principal.key)
        if token is None or not token.usable(self._clock(), self._margin):
            return None
        return token
