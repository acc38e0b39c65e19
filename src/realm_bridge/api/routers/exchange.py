"""
realm_bridge.api.routers.exchange

Token exchange endpoint.

Responsibilities:
- Exchange the caller's bearer credential for a backend access token.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.deps import get_principal
from realm_bridge.auth.models import Principal
from realm_bridge.bridge import Bridge

router = APIRouter(prefix="/v1", tags=["exchange"])


class ExchangeResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    identity: str
    subject: str
    realm_id: str
    is_external: bool
    expires_at: datetime
    scopes: list[str]


@router.post("/exchange", response_model=ExchangeResponse)
async def exchange_token(
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> ExchangeResponse:
    token = await bridge.engine.exchange(principal.credential)
    return ExchangeResponse(
        access_token=token.access_token,
        identity=token.identity,
        subject=token.subject,
        realm_id=token.realm_id,
        is_external=principal.is_external,
        expires_at=token.expires_at,
        scopes=list(token.scopes),
    )
