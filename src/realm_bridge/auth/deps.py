"""
realm_bridge.auth.deps

FastAPI dependency functions for authentication.

Responsibilities:
- Convert a bearer header into a typed `Principal` scoped to its issuing realm.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.models import Principal
from realm_bridge.bridge import Bridge

_bearer = HTTPBearer(auto_error=False)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    bridge: Bridge = Depends(bridge_dep),
) -> Principal:
    # Authn: require a bearer credential.
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    # Parse claims and resolve the issuing realm. MalformedCredential / UnknownRealm are
    # mapped to 401 by the app's exception handlers.
    return bridge.engine.authenticate(creds.credentials)


# --- Module Notes -----------------------------------------------------------
# No remote calls happen here; the first endpoint that needs a backend token triggers the
# exchange through the engine.
