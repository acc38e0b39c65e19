"""
realm_bridge.api.routers.calling

Calling token endpoint.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.status import HTTP_501_NOT_IMPLEMENTED

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.deps import get_principal
from realm_bridge.auth.models import Principal
from realm_bridge.bridge import Bridge

router = APIRouter(prefix="/v1/calling", tags=["calling"])


class CallingTokenResponse(BaseModel):
    token: str
    identity: str
    expires_at: datetime
    scopes: list[str]


@router.get("/token", response_model=CallingTokenResponse)
async def calling_token(
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> CallingTokenResponse:
    if not bridge.calling.enabled:
        raise HTTPException(
            status_code=HTTP_501_NOT_IMPLEMENTED, detail="Calling is not configured"
        )
    token = await bridge.calling.issue(principal)
    return CallingTokenResponse(
        token=token.access_token,
        identity=token.identity,
        expires_at=token.expires_at,
        scopes=list(token.scopes),
    )
