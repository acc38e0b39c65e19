from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_404_NOT_FOUND

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.jwt import issue_credential
from realm_bridge.bridge import Bridge
from realm_bridge.errors import UnknownRealm

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    realm_id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(default="", max_length=256)
    address: str = Field(default="", max_length=320)
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    bridge: Bridge = Depends(bridge_dep),
) -> DevTokenResponse:
    if bridge.settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    try:
        realm = bridge.registry.get(body.realm_id)
    except UnknownRealm as e:
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail=e.message) from e

    # The credential carries the realm's issuer claim, like a real login token would.
    token = issue_credential(
        cfg=bridge.dev_jwt,
        names=bridge.claim_names,
        subject=body.subject,
        issuer=realm.issuer,
        display_name=body.display_name,
        address=body.address,
        ttl=timedelta(minutes=body.ttl_minutes),
    )
    return DevTokenResponse(access_token=token)
