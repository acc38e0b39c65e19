"""
realm_bridge.exchange.delegation

Delegated (on-behalf-of) exchange clients.

Responsibilities:
- Present an inbound credential as an assertion to the *issuing* realm's confidential
  client and obtain a token scoped for the backend service.
- Classify remote failures: rejection -> DelegationDenied, outage -> BackendUnavailable.

Implementations:
- `OnBehalfOfDelegation`: OAuth2 JWT-bearer grant with `requested_token_use=on_behalf_of`.
- `BackendIssuedDelegation`: dev/test; the backend issues the token for the identity.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Protocol

import httpx

from realm_bridge.backend.base import BackendService
from realm_bridge.caching import Clock, utcnow
from realm_bridge.errors import BackendUnavailable, DelegationDenied
from realm_bridge.exchange.models import DelegatedGrant
from realm_bridge.realms.registry import Realm


class DelegationClient(Protocol):
    async def exchange(self, *, realm: Realm, assertion: str, identity: str) -> DelegatedGrant: ...


class OnBehalfOfDelegation:
    # Grant type URN per RFC 7523 (standard identifier, not a secret).
    GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

    def __init__(self, *, http: httpx.AsyncClient, clock: Clock = utcnow) -> None:
        self._http = http
        self._clock = clock

    async def exchange(self, *, realm: Realm, assertion: str, identity: str) -> DelegatedGrant:
        data = {
            "grant_type": self.GRANT_TYPE,
            "client_id": realm.client_id,
            "client_secret": realm.client_secret,
            "assertion": assertion,
            "scope": " ".join(realm.backend_scopes),
            "requested_token_use": "on_behalf_of",
        }
        try:
            r = await self._http.post(
                realm.token_endpoint,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"token endpoint timed out for realm {realm.realm_id}") from e
        except httpx.TransportError as e:
            raise BackendUnavailable(
                f"token endpoint unreachable for realm {realm.realm_id}: {e}"
            ) from e

        if r.status_code == 200:
            return self._grant(r, realm)

        if r.status_code == 429 or r.status_code >= 500:
            raise BackendUnavailable(f"token endpoint error {r.status_code}: {r.text}")

        error, description = _oauth_error(r)
        raise DelegationDenied(
            f"{error}: {description}" if description else error,
            error_code=error,
        )

    def _grant(self, r: httpx.Response, realm: Realm) -> DelegatedGrant:
        try:
            body = r.json()
        except ValueError as e:
            raise BackendUnavailable(
                f"token endpoint for realm {realm.realm_id} returned a non-JSON body"
            ) from e
        if not isinstance(body, dict) or not body.get("access_token"):
            raise DelegationDenied(
                "token endpoint returned no access_token", error_code="invalid_response"
            )
        try:
            lifetime = timedelta(seconds=int(body.get("expires_in", 3600)))
        except (TypeError, ValueError) as e:
            raise DelegationDenied(
                f"token endpoint returned invalid expires_in: {body.get('expires_in')!r}",
                error_code="invalid_response",
            ) from e
        scope = body.get("scope")
        return DelegatedGrant(
            access_token=str(body["access_token"]),
            expires_at=self._clock() + lifetime,
            scope=str(scope) if scope is not None else None,
        )

    async def aclose(self) -> None:
        await self._http.aclose()


class BackendIssuedDelegation:
    def __init__(self, backend: BackendService) -> None:
        self._backend = backend

    async def exchange(self, *, realm: Realm, assertion: str, identity: str) -> DelegatedGrant:
        issued = await self._backend.issue_token(identity, realm.backend_scopes)
        return DelegatedGrant(
            access_token=issued.token,
            expires_at=issued.expires_at,
            scope=" ".join(realm.backend_scopes),
        )


def _oauth_error(r: httpx.Response) -> tuple[str, str]:
    try:
        body: dict[str, Any] = r.json()
    except ValueError:
        return f"http_{r.status_code}", r.text
    if not isinstance(body, dict):
        return f"http_{r.status_code}", r.text
    error = str(body.get("error") or f"http_{r.status_code}")
    return error, str(body.get("error_description") or "")


# --- Module Notes -----------------------------------------------------------
# The realm that issued the credential is the realm whose client performs the exchange;
# the host realm is never asked to vouch for a credential it did not issue.
