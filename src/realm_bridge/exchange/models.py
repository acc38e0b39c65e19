"""
realm_bridge.exchange.models

Value types produced by the token exchange engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True, slots=True)
class DelegatedGrant:
    # Raw result of a delegated exchange, before it is bound to a backend identity.
    access_token: str = field(repr=False)
    expires_at: datetime
    scope: str | None = None


@dataclass(frozen=True, slots=True)
class ExchangedToken:
    """
    Backend access token usable by one principal, owned by one backend identity.
    """

    access_token: str = field(repr=False)
    identity: str
    subject: str
    realm_id: str
    expires_at: datetime
    scopes: tuple[str, ...] = ()

    def remaining(self, now: datetime) -> timedelta:
        return self.expires_at - now

    def usable(self, now: datetime, margin: timedelta) -> bool:
        # Never hand out a token inside the safety margin of its expiry.
        return self.remaining(now) > margin
