"""
realm_bridge.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`) with thread-store connectivity validation.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from realm_bridge.api.deps import bridge_dep
from realm_bridge.bridge import Bridge

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(bridge: Bridge = Depends(bridge_dep)) -> dict[str, str]:
    # Readiness: verify the mirror store is reachable.
    await bridge.store.ping()
    return {"status": "ready"}
