"""
realm_bridge.api.routers.operations

Diagnostic read APIs over the operation ledger.

Responsibilities:
- List recent operations, optionally for one subject.
- Fetch a single operation with its steps.
- Clear the ledger (non-prod only).

Outside dev/test a caller only sees operations recorded for its own subject and realm.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.status import HTTP_204_NO_CONTENT, HTTP_404_NOT_FOUND

from realm_bridge.api.deps import bridge_dep
from realm_bridge.auth.deps import get_principal
from realm_bridge.auth.models import Principal
from realm_bridge.bridge import Bridge
from realm_bridge.tracking.tracker import Operation

router = APIRouter(prefix="/v1/operations", tags=["operations"])


def _own(op: Operation, principal: Principal) -> bool:
    return op.subject == principal.subject and op.realm == principal.realm_id


@router.get("")
async def list_operations(
    subject: str | None = Query(default=None, max_length=256),
    limit: int = Query(default=50, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> list[dict[str, Any]]:
    if bridge.settings.env == "prod":
        ops = [op for op in bridge.tracker.for_subject(principal.subject) if _own(op, principal)]
        return [op.to_dict() for op in ops[:limit]]
    ops = bridge.tracker.for_subject(subject)[:limit] if subject else bridge.tracker.recent(limit)
    return [op.to_dict() for op in ops]


@router.get("/{operation_id}")
async def get_operation(
    operation_id: str,
    principal: Principal = Depends(get_principal),
    bridge: Bridge = Depends(bridge_dep),
) -> dict[str, Any]:
    op = bridge.tracker.get(operation_id)
    if op is None or (bridge.settings.env == "prod" and not _own(op, principal)):
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Operation not found")
    return op.to_dict()


@router.delete("", status_code=HTTP_204_NO_CONTENT, dependencies=[Depends(get_principal)])
async def clear_operations(bridge: Bridge = Depends(bridge_dep)) -> None:
    if bridge.settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")
    bridge.tracker.clear()
