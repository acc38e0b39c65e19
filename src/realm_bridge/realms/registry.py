"""
realm_bridge.realms.registry

Static table of trust domains.

Responsibilities:
- Map an issuing-realm claim value to its `Realm` (issuer, client credentials, scopes).
- Expose the host realm (the one that owns the backend service).
- Refuse unknown issuers; never default to any realm.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from realm_bridge.errors import UnknownRealm
from realm_bridge.settings import RealmConfig, Settings


@dataclass(frozen=True, slots=True)
class Realm:
    realm_id: str
    issuer: str
    authority: str
    client_id: str
    client_secret: str = field(repr=False)
    backend_scopes: tuple[str, ...] = ()

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority.rstrip('/')}/oauth2/v2.0/token"

    @classmethod
    def from_config(cls, cfg: RealmConfig) -> Realm:
        return cls(
            realm_id=cfg.realm_id,
            issuer=cfg.issuer,
            authority=cfg.authority,
            client_id=cfg.client_id,
            client_secret=cfg.client_secret,
            backend_scopes=tuple(cfg.backend_scopes),
        )


class RealmRegistry:
    def __init__(self, realms: Iterable[Realm], *, host_realm_id: str) -> None:
        by_id: dict[str, Realm] = {}
        by_issuer: dict[str, Realm] = {}
        for realm in realms:
            by_id[realm.realm_id] = realm
            # Issuer claims are tenant ids / URLs; compare case-insensitively.
            issuer = realm.issuer.strip().lower()
            if issuer in by_issuer:
                raise ValueError(f"issuer '{realm.issuer}' is configured for more than one realm")
            by_issuer[issuer] = realm
        if host_realm_id not in by_id:
            raise ValueError(f"host realm '{host_realm_id}' is not configured")
        self._by_id = by_id
        self._by_issuer = by_issuer
        self._host = by_id[host_realm_id]

    @classmethod
    def from_settings(cls, settings: Settings) -> RealmRegistry:
        return cls(
            (Realm.from_config(r) for r in settings.realms),
            host_realm_id=settings.host_realm_id,
        )

    @property
    def host(self) -> Realm:
        return self._host

    def resolve(self, issuer: str) -> Realm:
        realm = self._by_issuer.get(issuer.strip().lower())
        if realm is None:
            raise UnknownRealm(issuer)
        return realm

    def get(self, realm_id: str) -> Realm:
        realm = self._by_id.get(realm_id)
        if realm is None:
            raise UnknownRealm(realm_id)
        return realm

    def is_external(self, realm_id: str) -> bool:
        return realm_id != self._host.realm_id

    def __iter__(self):
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)


# --- Module Notes -----------------------------------------------------------
# Built once at startup from settings; lookups are plain dict reads and never block.
