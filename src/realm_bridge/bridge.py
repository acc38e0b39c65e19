"""
realm_bridge.bridge

Composition root for the identity bridge.

Responsibilities:
- Choose each collaborator implementation once, from settings (backend, delegation, store).
- Wire the registry, caches, exchange engine, calling tokens, membership and tracker together.
- Own the lifecycle of everything that holds connections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import httpx

from realm_bridge.auth.jwt import ClaimNames, DevJwtConfig
from realm_bridge.backend.base import BackendService
from realm_bridge.backend.http import HttpBackendService
from realm_bridge.backend.memory import InMemoryBackendService
from realm_bridge.caching import Clock, utcnow
from realm_bridge.db.init_db import init_db
from realm_bridge.db.session import create_engine, create_sessionmaker
from realm_bridge.db.store import SqlThreadStore
from realm_bridge.exchange.calling import CallingTokenIssuer
from realm_bridge.exchange.delegation import (
    BackendIssuedDelegation,
    DelegationClient,
    OnBehalfOfDelegation,
)
from realm_bridge.exchange.engine import TokenExchangeEngine
from realm_bridge.identity.cache import IdentityCache
from realm_bridge.observability.logging import get_logger
from realm_bridge.realms.registry import RealmRegistry
from realm_bridge.settings import Settings
from realm_bridge.threads.models import Participant, placeholder_subject
from realm_bridge.threads.service import ThreadService
from realm_bridge.threads.store import InMemoryThreadStore, ThreadStore
from realm_bridge.tracking.tracker import OperationTracker

log = get_logger(__name__)


@dataclass(slots=True)
class Bridge:
    settings: Settings
    registry: RealmRegistry
    claim_names: ClaimNames
    backend: BackendService
    delegation: DelegationClient
    store: ThreadStore
    tracker: OperationTracker
    identities: IdentityCache
    engine: TokenExchangeEngine
    threads: ThreadService
    calling: CallingTokenIssuer

    @property
    def dev_jwt(self) -> DevJwtConfig:
        s = self.settings
        return DevJwtConfig(alg=s.dev_jwt_alg, audience=s.dev_jwt_audience, secret=s.dev_jwt_secret)

    async def aclose(self) -> None:
        aclose = getattr(self.delegation, "aclose", None)
        if aclose is not None:
            await aclose()
        await self.backend.aclose()
        await self.store.aclose()
        log.info("bridge_closed")


async def build_bridge(
    settings: Settings,
    *,
    backend: BackendService | None = None,
    delegation: DelegationClient | None = None,
    store: ThreadStore | None = None,
    clock: Clock = utcnow,
) -> Bridge:
    """
    Build the bridge. Explicit collaborators override the settings-driven choice (tests).
    """

    registry = RealmRegistry.from_settings(settings)
    claim_names = ClaimNames(
        subject=settings.subject_claim,
        realm=settings.realm_claim,
        name=settings.name_claim,
        address=settings.address_claim,
    )

    if backend is None:
        backend = _backend(settings, clock)
    if delegation is None:
        delegation = _delegation(settings, backend, clock)
    if store is None:
        store = await _store(settings)

    tracker = OperationTracker(retention=settings.operation_retention, clock=clock)
    identities = IdentityCache(
        backend, ttl=timedelta(hours=settings.identity_ttl_hours), clock=clock
    )
    engine = TokenExchangeEngine(
        registry=registry,
        identities=identities,
        delegation=delegation,
        tracker=tracker,
        claim_names=claim_names,
        safety_margin=timedelta(minutes=settings.safety_margin_minutes),
        cache_floor=timedelta(minutes=settings.token_cache_floor_minutes),
        timeout=settings.backend_timeout_seconds,
        clock=clock,
    )
    calling = CallingTokenIssuer(
        identities=identities,
        backend=backend,
        tracker=tracker,
        scopes=settings.calling_scopes,
        refresh_margin=timedelta(minutes=settings.calling_refresh_margin_minutes),
        cache_floor=timedelta(minutes=settings.token_cache_floor_minutes),
        timeout=settings.backend_timeout_seconds,
        clock=clock,
    )
    defaults = [
        Participant(
            subject=placeholder_subject(p.address),
            display_name=p.display_name,
            address=p.address,
            realm_id=registry.get(p.realm_id).realm_id,
            is_external=registry.is_external(p.realm_id),
        )
        for p in settings.default_participants
    ]
    threads = ThreadService(
        registry=registry,
        engine=engine,
        identities=identities,
        backend=backend,
        store=store,
        tracker=tracker,
        default_participants=defaults,
        current_thread_ttl=timedelta(hours=settings.current_thread_ttl_hours),
        backend_timeout=settings.backend_timeout_seconds,
        list_all_threads=settings.list_all_threads,
        clock=clock,
    )
    log.info(
        "bridge_ready",
        host_realm=registry.host.realm_id,
        realms=[r.realm_id for r in registry],
        backend=type(backend).__name__,
        delegation=type(delegation).__name__,
        store=type(store).__name__,
    )
    return Bridge(
        settings=settings,
        registry=registry,
        claim_names=claim_names,
        backend=backend,
        delegation=delegation,
        store=store,
        tracker=tracker,
        identities=identities,
        engine=engine,
        threads=threads,
        calling=calling,
    )


def _backend(settings: Settings, clock: Clock) -> BackendService:
    if settings.backend_mode == "http":
        http = httpx.AsyncClient(
            base_url=settings.backend_base_url,
            timeout=settings.backend_timeout_seconds,
        )
        return HttpBackendService(http=http, access_key=settings.backend_access_key)
    return InMemoryBackendService(
        token_lifetime=timedelta(minutes=settings.backend_token_lifetime_minutes),
        clock=clock,
    )


def _delegation(settings: Settings, backend: BackendService, clock: Clock) -> DelegationClient:
    if settings.delegation_mode == "obo":
        http = httpx.AsyncClient(timeout=settings.backend_timeout_seconds)
        return OnBehalfOfDelegation(http=http, clock=clock)
    return BackendIssuedDelegation(backend)


async def _store(settings: Settings) -> ThreadStore:
    if settings.store_backend == "sql":
        engine = create_engine(settings.database_url)
        # Tables are created on startup; the mirror schema is small and additive.
        await init_db(engine)
        return SqlThreadStore(engine=engine, sessions=create_sessionmaker(engine))
    return InMemoryThreadStore()


# --- Module Notes -----------------------------------------------------------
# Nothing outside this module branches on `backend_mode`, `delegation_mode` or
# `store_backend`; every other layer only sees the protocols.
