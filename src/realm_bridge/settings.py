"""
realm_bridge.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Describe every trust domain (realm) the bridge accepts credentials from.
- Hide secrets from repr/logging (client secrets, backend access key, dev JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RealmConfig(BaseModel):
    """
    One trust domain. Origin and host realms are modeled uniformly.
    """

    realm_id: str
    # Value of the issuing-realm claim (e.g. a tenant id) carried by credentials from this realm.
    issuer: str
    authority: str
    client_id: str
    client_secret: str = Field(default="", repr=False)
    backend_scopes: list[str] = Field(default_factory=lambda: ["chat"])


class ParticipantConfig(BaseModel):
    # Well-known counterpart addresses auto-added to new threads as placeholders.
    address: str
    display_name: str
    realm_id: str


def _default_realms() -> list[RealmConfig]:
    return [
        RealmConfig(
            realm_id="host",
            issuer="host-tenant",
            authority="https://login.host.example/host-tenant",
            client_id="host-bridge-client",
            client_secret="dev-host-secret",
        ),
        RealmConfig(
            realm_id="origin",
            issuer="origin-tenant",
            authority="https://login.origin.example/origin-tenant",
            client_id="origin-bridge-client",
            client_secret="dev-origin-secret",
        ),
    ]


def _default_participants() -> list[ParticipantConfig]:
    return [
        ParticipantConfig(
            address="host.user@host.example", display_name="Host User", realm_id="host"
        ),
        ParticipantConfig(
            address="origin.user@origin.example", display_name="Origin User", realm_id="origin"
        ),
    ]


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration (complex fields accept JSON)
    - Defaults safe for local dev (in-memory backend + in-memory store)
    - Single settings object injected across layers
    """

    model_config = SettingsConfigDict(env_prefix="BRIDGE_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "realm-bridge"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Realms
    host_realm_id: str = "host"
    realms: list[RealmConfig] = Field(default_factory=_default_realms)

    # Credential claim names, read once at parse time.
    subject_claim: str = "oid"
    realm_claim: str = "tid"
    name_claim: str = "name"
    address_claim: str = "email"

    # Threads
    default_participants: list[ParticipantConfig] = Field(default_factory=_default_participants)
    current_thread_ttl_hours: float = 2.0
    # Unrestricted thread listing is an explicit opt-in; membership filtering is the default.
    list_all_threads: bool = False

    # Caches
    safety_margin_minutes: float = 10.0
    token_cache_floor_minutes: float = 10.0
    identity_ttl_hours: float = 24.0

    # Calling tokens (backend-issued, own scope set); an empty scope list disables calling.
    calling_scopes: list[str] = Field(default_factory=lambda: ["voip"])
    calling_refresh_margin_minutes: float = 5.0

    # Backend service
    backend_mode: Literal["memory", "http"] = "memory"
    backend_base_url: str = "http://localhost:9090"
    backend_access_key: str = Field(default="", repr=False)
    backend_timeout_seconds: float = 10.0
    backend_token_lifetime_minutes: int = 60

    # Delegated exchange: "backend" asks the backend to issue the token, "obo" calls the realm.
    delegation_mode: Literal["backend", "obo"] = "backend"

    # Local thread mirror
    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./realm_bridge.db"

    # Diagnostics
    operation_retention: int = 1000

    # Dev credentials (used by /v1/dev/token only)
    dev_jwt_alg: str = "HS256"
    dev_jwt_audience: str = "realm-bridge"
    dev_jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    @model_validator(mode="after")
    def _check_realms(self) -> Settings:
        ids = [r.realm_id for r in self.realms]
        if len(set(ids)) != len(ids):
            raise ValueError("realm ids must be unique")
        # The registry matches issuers case-insensitively, so uniqueness is checked the same way.
        issuers = [r.issuer.strip().lower() for r in self.realms]
        if len(set(issuers)) != len(issuers):
            raise ValueError("realm issuers must be unique (case-insensitive)")
        if self.host_realm_id not in ids:
            raise ValueError(f"host realm '{self.host_realm_id}' is not configured")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Secrets arrive through the environment (or whatever process loads it); this module only
# reads them once. The realm registry is built from `realms` at startup and never changes.
