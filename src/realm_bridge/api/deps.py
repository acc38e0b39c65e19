"""
realm_bridge.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and the bridge composition root.
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from fastapi import Request

from realm_bridge.bridge import Bridge
from realm_bridge.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The settings the app was created with (tests pass their own).
    return request.app.state.settings  # type: ignore[attr-defined]


def bridge_dep(request: Request) -> Bridge:
    # The bridge is built in the lifespan of `realm_bridge.api.app.create_app`.
    return request.app.state.bridge  # type: ignore[attr-defined]
