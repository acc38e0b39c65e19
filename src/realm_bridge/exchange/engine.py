"""
realm_bridge.exchange.engine

Token exchange engine: origin-realm bearer credential -> backend access token.

Responsibilities:
- Read the credential's claims and resolve its issuing realm (no remote calls).
- Serve cached tokens that are still outside the safety margin of their expiry.
- On a miss, obtain the backend identity and run the delegated exchange against the
  realm that issued the credential, then cache the result.
- Coalesce concurrent misses per `(subject, realm)` into a single remote exchange.
- Record every step in the operation ledger.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from realm_bridge.auth.jwt import ClaimNames, read_claims, strip_bearer
from realm_bridge.auth.models import Principal
from realm_bridge.caching import Clock, KeyedLocks, TTLCache, utcnow
from realm_bridge.errors import BackendUnavailable, BridgeError
from realm_bridge.exchange.delegation import DelegationClient
from realm_bridge.exchange.models import ExchangedToken
from realm_bridge.identity.cache import IdentityCache
from realm_bridge.observability.logging import get_logger
from realm_bridge.realms.registry import Realm, RealmRegistry
from realm_bridge.tracking.tracker import OperationTracker, TrackedOperation

log = get_logger(__name__)

TokenKey = tuple[str, str]


class TokenExchangeEngine:
    def __init__(
        self,
        *,
        registry: RealmRegistry,
        identities: IdentityCache,
        delegation: DelegationClient,
        tracker: OperationTracker,
        claim_names: ClaimNames = ClaimNames(),
        safety_margin: timedelta = timedelta(minutes=10),
        cache_floor: timedelta = timedelta(minutes=10),
        timeout: float | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._identities = identities
        self._delegation = delegation
        self._tracker = tracker
        self._claim_names = claim_names
        self._margin = safety_margin
        self._floor = cache_floor
        self._timeout = timeout
        self._clock = clock
        self._tokens: TTLCache[TokenKey, ExchangedToken] = TTLCache(clock=clock)
        self._locks: KeyedLocks[TokenKey] = KeyedLocks()

    @property
    def registry(self) -> RealmRegistry:
        return self._registry

    def authenticate(self, bearer: str) -> Principal:
        """
        Parse the credential and resolve its realm. Raises MalformedCredential / UnknownRealm.
        """

        claims = read_claims(bearer, names=self._claim_names)
        realm = self._registry.resolve(claims.issuer)
        return Principal(
            subject=claims.subject,
            display_name=claims.display_name or claims.address or claims.subject,
            address=claims.address,
            realm_id=realm.realm_id,
            is_external=self._registry.is_external(realm.realm_id),
            credential=strip_bearer(bearer),
        )

    async def exchange(self, bearer: str, *, timeout: float | None = None) -> ExchangedToken:
        with self._tracker.track(
            "TokenExchange", "Exchange bearer credential for backend access token"
        ) as op:
            stage = "ParseCredential"
            try:
                principal = self.authenticate(bearer)
                realm = self._registry.get(principal.realm_id)
                op.bind(subject=principal.subject, realm=realm.realm_id)
                op.step(
                    "ParseCredential",
                    "Parsed credential and resolved issuing realm",
                    metadata={
                        "subject": principal.subject,
                        "realm": realm.realm_id,
                        "is_external": principal.is_external,
                    },
                )

                stage = "CheckCache"
                cached = self._usable(principal.key)
                if cached is not None:
                    op.step(
                        "CheckCache", "Found cached backend token", metadata=_token_meta(cached)
                    )
                    return cached
                op.step("CheckCache", "No usable cached token, proceeding to exchange")

                stage = "DelegatedExchange"
                deadline = timeout if timeout is not None else self._timeout
                try:
                    async with asyncio.timeout(deadline):
                        return await self._exchange_locked(principal, realm, op)
                except TimeoutError as e:
                    raise BackendUnavailable(
                        f"token exchange timed out after {deadline}s"
                    ) from e
            except BridgeError as e:
                op.step(
                    stage,
                    "Token exchange failed",
                    success=False,
                    error=str(e),
                    metadata={"code": e.code},
                )
                raise

    def cached(self, subject: str, realm_id: str) -> ExchangedToken | None:
        return self._usable((subject, realm_id))

    def invalidate(self, subject: str, realm_id: str) -> None:
        self._tokens.pop((subject, realm_id))

    def _usable(self, key: TokenKey) -> ExchangedToken | None:
        token = self._tokens.get(key)
        if token is None or not token.usable(self._clock(), self._margin):
            return None
        return token

    async def _exchange_locked(
        self, principal: Principal, realm: Realm, op: TrackedOperation
    ) -> ExchangedToken:
        async with self._locks(principal.key):
            # A concurrent caller may have completed the exchange while we waited.
            cached = self._usable(principal.key)
            if cached is not None:
                op.step(
                    "CheckCache",
                    "Token populated by concurrent exchange",
                    metadata=_token_meta(cached),
                )
                return cached

            identity = await self._identities.get_or_create(principal.subject, realm.realm_id)
            op.step("EnsureIdentity", "Backend identity ready", metadata={"identity": identity})

            grant = await self._delegation.exchange(
                realm=realm, assertion=principal.credential, identity=identity
            )
            op.step(
                "DelegatedExchange",
                f"Acquired backend token on behalf of subject via realm {realm.realm_id}",
                metadata={"scopes": list(realm.backend_scopes), "expires_at": grant.expires_at},
            )

            token = ExchangedToken(
                access_token=grant.access_token,
                identity=identity,
                subject=principal.subject,
                realm_id=realm.realm_id,
                expires_at=grant.expires_at,
                scopes=realm.backend_scopes,
            )
            ttl = grant.expires_at - self._clock() - self._margin
            if ttl <= timedelta(0):
                ttl = self._floor
            self._tokens.set(principal.key, token, ttl)
            op.step(
                "CacheToken",
                "Cached backend token",
                metadata={"ttl_seconds": int(ttl.total_seconds())},
            )

            if principal.is_external:
                op.step(
                    "CrossRealmExchange",
                    f"Credential from realm {realm.realm_id} exchanged for host backend access",
                    metadata={
                        "source_realm": realm.realm_id,
                        "host_realm": self._registry.host.realm_id,
                    },
                )
            log.info(
                "token_exchanged",
                subject=principal.subject,
                realm=realm.realm_id,
                identity=identity,
                cross_realm=principal.is_external,
            )
            return token


def _token_meta(token: ExchangedToken) -> dict[str, object]:
    return {"identity": token.identity, "expires_at": token.expires_at}


# --- Module Notes -----------------------------------------------------------
# No retries here: a failed exchange leaves the cache untouched and the typed error goes
# back to the caller, who owns any retry policy.
