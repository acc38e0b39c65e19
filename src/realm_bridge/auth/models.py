"""
realm_bridge.auth.models

Auth domain models.

Responsibilities:
- Define the typed claim set read from an inbound bearer credential.
- Define the authenticated identity type (`Principal`) passed through services and endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class CredentialClaims:
    """
    Claims parsed once from a bearer credential. `subject` and `issuer` are required;
    the rest are optional and may be empty.
    """

    subject: str
    issuer: str
    display_name: str = ""
    address: str = ""
    expires_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity, scoped to the realm that issued its credential.
    """

    subject: str
    display_name: str
    address: str
    realm_id: str
    is_external: bool
    # Raw credential, kept so later operations can re-exchange transparently.
    credential: str = field(default="", repr=False, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.subject, self.realm_id)


# --- Module Notes -----------------------------------------------------------
# A Principal only lives for a request/session; the identity and token caches are the only
# places where anything derived from it outlives the call.
