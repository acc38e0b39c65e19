"""
realm_bridge.auth.jwt

Bearer credential helpers.

Responsibilities:
- Read claims from an inbound credential into `CredentialClaims` (no signature check here).
- Issue short-lived dev credentials that look like a realm's login tokens.

Note:
- Signature verification belongs to the transport layer that accepted the original login;
  this module only reads claims.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError

from realm_bridge.auth.models import CredentialClaims
from realm_bridge.errors import MalformedCredential


@dataclass(frozen=True, slots=True)
class ClaimNames:
    # Which claim carries which field; fixed at startup.
    subject: str = "oid"
    realm: str = "tid"
    name: str = "name"
    address: str = "email"


@dataclass(frozen=True, slots=True)
class DevJwtConfig:
    alg: str
    audience: str
    secret: str


def strip_bearer(credential: str) -> str:
    token = credential.strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    return token


def read_claims(token: str, *, names: ClaimNames) -> CredentialClaims:
    token = strip_bearer(token)
    if not token:
        raise MalformedCredential("empty bearer credential")
    try:
        payload: dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
    except InvalidTokenError as e:
        raise MalformedCredential(f"unparsable credential: {e}") from e

    subject = _text(payload.get(names.subject))
    issuer = _text(payload.get(names.realm))
    if not subject:
        raise MalformedCredential(f"missing required claim: {names.subject}")
    if not issuer:
        raise MalformedCredential(f"missing required claim: {names.realm}")

    exp = payload.get("exp")
    return CredentialClaims(
        subject=subject,
        issuer=issuer,
        display_name=_text(payload.get(names.name)),
        address=_text(payload.get(names.address)),
        expires_at=datetime.fromtimestamp(exp, tz=UTC) if isinstance(exp, int | float) else None,
    )


def issue_credential(
    *,
    cfg: DevJwtConfig,
    names: ClaimNames,
    subject: str,
    issuer: str,
    display_name: str = "",
    address: str = "",
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "aud": cfg.audience,
        "sub": subject,
        names.subject: subject,
        names.realm: issuer,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    if display_name:
        payload[names.name] = display_name
    if address:
        payload[names.address] = address
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


# --- Module Notes -----------------------------------------------------------
# `read_claims` is the only place claim names are interpreted; everything downstream uses
# the typed `CredentialClaims` fields.
